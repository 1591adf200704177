from dataclasses import dataclass
from typing import Tuple

from core.models import TemplateOptions


@dataclass(frozen=True)
class NetworkConfig:
    network_name: str
    nic_name: str
    address_type: str


def network_config_for(network: str, options: TemplateOptions) -> NetworkConfig:
    return NetworkConfig(
        network_name=network,
        nic_name=options.nic_name,
        address_type=options.address_type,
    )


def resolve_network_configs(options: TemplateOptions) -> Tuple[NetworkConfig, ...]:
    """
    One config per requested network, duplicates dropped, request order kept.

    The order matters: NIC keys and guest interface names (eth0, eth1, ...)
    are both assigned by position in this tuple.
    """
    configs = (network_config_for(network, options) for network in options.networks)
    return tuple(dict.fromkeys(configs))


def boot_proto(address_type: str) -> str:
    if address_type == "generated":
        return "dhcp"
    return "none"

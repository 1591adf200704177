from dataclasses import dataclass, field
from typing import List, Optional

from config.settings import DEFAULT_CORES, DEFAULT_MEMORY_MB


@dataclass(frozen=True)
class Volume:
    size_gb: int


@dataclass(frozen=True)
class Hardware:
    """
    Requested shape of a node. 'cores' below 1 falls back to a single core.
    """

    cores: int = DEFAULT_CORES
    ram_mb: int = DEFAULT_MEMORY_MB
    volumes: List[Volume] = field(default_factory=list)

    @property
    def num_cpus(self) -> int:
        return self.cores if self.cores and self.cores >= 1 else 1


@dataclass(frozen=True)
class TemplateOptions:
    networks: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    iso_file_name: Optional[str] = None
    flp_file_name: Optional[str] = None
    post_configuration: bool = False
    wait_on_port: Optional[int] = None
    nic_name: str = "Network adapter"
    address_type: str = "generated"


@dataclass(frozen=True)
class NodeTemplate:
    image_id: str
    hardware: Hardware = field(default_factory=Hardware)
    options: TemplateOptions = field(default_factory=TemplateOptions)

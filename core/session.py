import ssl
from typing import Any, Callable, List, Optional

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim, vmodl

from config.settings import (
    VSPHERE_HOST,
    VSPHERE_INSECURE,
    VSPHERE_PASSWORD,
    VSPHERE_PORT,
    VSPHERE_USER,
)
from core.errors import NodeNotFound, ProviderUnavailable
from core.logger import log_error, log_event


def connect() -> Any:
    """
    Open a new service instance against the configured vCenter.
    """
    ssl_context = None
    if VSPHERE_INSECURE:
        ssl_context = ssl._create_unverified_context()
    return SmartConnect(
        host=VSPHERE_HOST,
        user=VSPHERE_USER,
        pwd=VSPHERE_PASSWORD,
        port=VSPHERE_PORT,
        sslContext=ssl_context,
    )


class VSphereSession:
    """
    One vCenter login scoped to a 'with' block.

        with VSphereSession() as session:
            vm = find_vm(session.content, "web-01")

    A failed login raises ProviderUnavailable. Disconnect errors on the way
    out are only logged: they never replace the error that ended the block.
    """

    def __init__(
        self,
        connector: Callable[[], Any] = connect,
        disconnector: Callable[[Any], None] = Disconnect,
    ) -> None:
        self._connector = connector
        self._disconnector = disconnector
        self.service_instance = None
        self.content = None

    def __enter__(self) -> "VSphereSession":
        try:
            self.service_instance = self._connector()
        except (vmodl.MethodFault, OSError) as e:
            log_error(f"[session] Unable to connect to vCenter {VSPHERE_HOST}: {e}")
            raise ProviderUnavailable(f"Unable to connect to vCenter {VSPHERE_HOST}: {e}") from e
        if self.service_instance is None:
            raise ProviderUnavailable(f"Unable to connect to vCenter {VSPHERE_HOST}")
        try:
            self.content = self.service_instance.RetrieveContent()
        except (vmodl.MethodFault, OSError) as e:
            log_error(f"[session] Unable to read service content from {VSPHERE_HOST}: {e}")
            self.__exit__(type(e), e, e.__traceback__)
            raise ProviderUnavailable(
                f"Unable to read service content from vCenter {VSPHERE_HOST}: {e}"
            ) from e
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            self._disconnector(self.service_instance)
        except Exception as e:  # noqa: BLE001
            log_event(f"[session] Disconnect from {VSPHERE_HOST} failed: {e}")
        return False


# ----------------------------------------------------------------------
# Inventory lookups
# ----------------------------------------------------------------------
def find_all(content, vimtype, folder=None) -> List[Any]:
    """All managed objects of 'vimtype' below 'folder' (root by default)."""
    folder = folder or content.rootFolder
    container = content.viewManager.CreateContainerView(folder, [vimtype], True)
    try:
        return list(container.view)
    finally:
        container.Destroy()


def find_by_name(content, vimtype, name: str, folder=None) -> Optional[Any]:
    for item in find_all(content, vimtype, folder):
        if item.name == name:
            return item
    return None


def find_vm(content, name: str) -> Any:
    vm = find_by_name(content, vim.VirtualMachine, name)
    if vm is None:
        raise NodeNotFound(name)
    return vm


def is_template(vm) -> bool:
    config = vm.config
    return bool(config is not None and config.template)


def target_host(content, host_name: str = "") -> Any:
    """
    The ESXi host new nodes land on: the named one, else the first found.
    """
    hosts = find_all(content, vim.HostSystem)
    if host_name:
        for host in hosts:
            if host.name == host_name:
                return host
        raise ProviderUnavailable(f"ESXi host '{host_name}' not found")
    if not hosts:
        raise ProviderUnavailable("No ESXi host available in inventory")
    return hosts[0]


def best_datastore(host) -> Any:
    """Datastore of 'host' with the most free space."""
    datastore = None
    free_space = 0
    for candidate in host.datastore:
        candidate_free = candidate.summary.freeSpace or 0
        if candidate_free > free_space:
            free_space = candidate_free
            datastore = candidate
    if datastore is None:
        raise ProviderUnavailable(f"No datastore with free space on host '{host.name}'")
    return datastore


def is_resource_pool_of(pool, host_name: str) -> bool:
    owner = pool.owner
    if owner is None:
        return False
    return any(host.name == host_name for host in (owner.host or []))


def find_resource_pool(content, host_name: str) -> Optional[Any]:
    """
    First resource pool, in inventory order, owned by a compute resource
    that contains 'host_name'.
    """
    try:
        for pool in find_all(content, vim.ResourcePool):
            if is_resource_pool_of(pool, host_name):
                return pool
    except vmodl.MethodFault as e:
        log_error(f"[session] Problem finding a resource pool for {host_name}: {e}")
    return None

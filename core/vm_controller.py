from typing import Any, Callable, Dict, Iterable, List, Optional

from pyVmomi import vim, vmodl

from config.settings import (
    GROUP_FIELD_NAME,
    GUEST_TOOLS_TIMEOUT,
    POST_CONFIG_TOOLS_TIMEOUT,
    TAGS_FIELD_NAME,
    VM_INIT_PASSWORD,
    VM_LOGIN_USER,
    VSPHERE_CLONING,
    VSPHERE_TARGET_HOST,
)
from core.errors import (
    NodeNotFound,
    ProviderError,
    ResourcePoolNotFound,
    TaskFailed,
    TemplateNotFound,
    VSphereError,
)
from core.guest import (
    GuestCommandRunner,
    build_post_configuration_script,
    wait_for_guest_nics,
    wait_for_guest_tools,
)
from core.hardware import build_device_changes, reconcile
from core.hardware_profiles import list_hardware_profiles
from core.logger import log_error, log_event
from core.metrics import (
    record_node_destroyed,
    record_node_provisioned,
    record_provision_failure,
)
from core.models import NodeTemplate
from core.name_validator import validate
from core.network import resolve_network_configs
from core.session import (
    VSphereSession,
    best_datastore,
    find_all,
    find_resource_pool,
    find_vm,
    is_template,
    target_host,
)
from core.tasks import wait_for_task
from core.template_lock import TemplateLockRegistry

POWERED_OFF = vim.VirtualMachinePowerState.poweredOff

NODE_STATUS = {
    "poweredOn": "running",
    "poweredOff": "stopped",
    "suspended": "suspended",
}

_OS_FAMILIES = ["centos", "rhel", "ubuntu", "debian", "sles", "windows", "freebsd", "oracle"]


def build_clone_spec(master, resource_pool, datastore, cloning: str) -> vim.vm.CloneSpec:
    """
    Clone spec placing the copy on 'resource_pool' / 'datastore'.

    'linked' clones share the template's current snapshot; a template
    without a snapshot falls back to a full clone.
    """
    relocate = vim.vm.RelocateSpec(pool=resource_pool, datastore=datastore)
    spec = vim.vm.CloneSpec(location=relocate, powerOn=True, template=False)

    snapshot = master.snapshot.currentSnapshot if master.snapshot is not None else None
    if cloning == "linked" and snapshot is not None:
        relocate.diskMoveType = "createNewChildDiskBacking"
        spec.snapshot = snapshot
    else:
        if cloning == "linked":
            log_event(f"[clone] Template '{master.name}' has no snapshot, using a full clone")
        relocate.diskMoveType = "moveAllDiskBackingsAndDisallowSharing"
    return spec


class VSphereController:
    """
    Node lifecycle on a vSphere endpoint.

    Every public call opens its own vCenter session and closes it before
    returning, whatever the outcome. Provisioning clones a template:

        validate name -> template -> resource pool -> clone spec
        -> device delta -> clone task -> tags -> guest configuration

    There is no rollback: a clone that succeeded stays in place when a
    later step fails, and the error is surfaced to the caller.
    """

    def __init__(
        self,
        session_factory: Callable[[], Any] = VSphereSession,
        runner_factory: Callable[..., GuestCommandRunner] = GuestCommandRunner,
        target_host_name: str = VSPHERE_TARGET_HOST,
        cloning: str = VSPHERE_CLONING,
        init_password: str = VM_INIT_PASSWORD,
    ) -> None:
        self.session_factory = session_factory
        self.runner_factory = runner_factory
        self.target_host_name = target_host_name
        self.cloning = cloning
        self.init_password = init_password

    # ------------------------------------------------------------------
    # Utility methods
    # ------------------------------------------------------------------
    @staticmethod
    def _get_template(content, image_id: str):
        try:
            vm = find_vm(content, image_id)
        except NodeNotFound:
            log_error(f"[clone] Cannot find an image called {image_id}")
            raise TemplateNotFound(image_id) from None
        if not is_template(vm):
            log_error(f"[clone] VM '{image_id}' is not marked as a template")
            raise TemplateNotFound(image_id)
        return vm

    def _resource_pool(self, content, host):
        resource_pool = find_resource_pool(content, host.name)
        if resource_pool is None:
            log_error(f"[clone] No resource pool for host '{host.name}'")
            raise ResourcePoolNotFound(host.name)
        return resource_pool

    @staticmethod
    def _clone(master, name: str, clone_spec):
        log_event(f"[clone] Cloning '{master.name}' into '{name}'")
        task = master.Clone(folder=master.parent, name=name, spec=clone_spec)
        try:
            return wait_for_task(task, kind="clone")
        except TaskFailed:
            log_error(f"[clone] Can't clone vm {master.name}")
            raise

    @staticmethod
    def _field_names(content) -> Dict[int, str]:
        return {field.key: field.name for field in (content.customFieldsManager.field or [])}

    def _field_keys(self, content) -> Dict[str, int]:
        """Custom field keys for group/tags, defining the fields when missing."""
        manager = content.customFieldsManager
        keys = {name: key for key, name in self._field_names(content).items()}
        for name in (TAGS_FIELD_NAME, GROUP_FIELD_NAME):
            if name not in keys:
                log_event(f"[clone] Defining custom field '{name}'")
                field = manager.AddCustomFieldDef(name=name, moType=vim.VirtualMachine)
                keys[name] = field.key
        return keys

    def _write_tags(self, content, vm, group: str, tags: List[str]) -> bool:
        """Write tags then group; False when no tags were requested."""
        if not tags:
            return False
        keys = self._field_keys(content)
        manager = content.customFieldsManager
        manager.SetField(entity=vm, key=keys[TAGS_FIELD_NAME], value=",".join(tags))
        manager.SetField(entity=vm, key=keys[GROUP_FIELD_NAME], value=group)
        log_event(f"[clone] Tagged '{vm.name}' group={group} tags={tags}")
        return True

    def _post_configure(self, runner: GuestCommandRunner, vm, name: str, network_configs) -> None:
        if not is_template(vm):
            wait_for_guest_tools(vm, POST_CONFIG_TOOLS_TIMEOUT)
        script = build_post_configuration_script(name, network_configs)
        try:
            runner.run_script(vm, script)
        except VSphereError:
            log_error(f"[clone] Failed to run init script on node ({name})")
            raise

    @staticmethod
    def _node_record(vm, field_names: Dict[int, str]) -> Dict[str, Any]:
        values = {}
        for custom_value in vm.customValue or []:
            field_name = field_names.get(custom_value.key)
            if field_name:
                values[field_name] = custom_value.value

        tags = values.get(TAGS_FIELD_NAME)
        power_state = str(vm.runtime.powerState)
        hardware = vm.config.hardware if vm.config is not None else None
        guest = vm.guest
        return {
            "id": vm.name,
            "name": vm.name,
            "group": values.get(GROUP_FIELD_NAME),
            "tags": tags.split(",") if tags else [],
            "power_state": power_state,
            "status": NODE_STATUS.get(power_state, "unknown"),
            "template": is_template(vm),
            "cpus": hardware.numCPU if hardware is not None else None,
            "memory_mb": hardware.memoryMB if hardware is not None else None,
            "ip_address": guest.ipAddress if guest is not None else None,
            "hostname": guest.hostName if guest is not None else None,
            "tools_status": guest.toolsRunningStatus if guest is not None else None,
        }

    @staticmethod
    def _image_record(vm) -> Dict[str, Any]:
        guest_id = (vm.config.guestId or "") if vm.config is not None else ""
        description = vm.config.guestFullName if vm.config is not None else None
        lowered = guest_id.lower()
        os_family = next((family for family in _OS_FAMILIES if family in lowered), "unrecognized")
        return {
            "id": vm.name,
            "name": vm.name,
            "description": description,
            "guest_id": guest_id,
            "os_family": os_family,
            "is_64bit": "64" in guest_id,
            "status": "AVAILABLE",
        }

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------
    def create_node(self, group: str, name: str, template: NodeTemplate) -> Dict[str, Any]:
        """
        Clone template.image_id into a new node called 'name'.

        Returns the node record plus the login every node is provisioned
        with (root and the configured init password).
        """
        options = template.options
        hardware = template.hardware
        try:
            validate(name)
            with self.session_factory() as session:
                content = session.content

                master = self._get_template(content, template.image_id)
                host = target_host(content, self.target_host_name)
                datastore = best_datastore(host)
                resource_pool = self._resource_pool(content, host)

                clone_spec = build_clone_spec(master, resource_pool, datastore, self.cloning)

                network_configs = resolve_network_configs(options)
                delta = reconcile(
                    master.config.hardware.device,
                    hardware,
                    network_configs,
                    options,
                    datastore.name,
                    name,
                )
                clone_spec.config = vim.vm.ConfigSpec(
                    memoryMB=hardware.ram_mb,
                    numCPUs=hardware.num_cpus,
                    deviceChange=build_device_changes(delta, datastore),
                )

                cloned = self._clone(master, name, clone_spec)
                if cloned is None:
                    cloned = find_vm(content, name)

                runner = self.runner_factory(content, password=self.init_password)
                # guest configuration only follows a tagged clone
                if self._write_tags(content, cloned, group, options.tags):
                    if options.post_configuration:
                        self._post_configure(runner, cloned, name, network_configs)
                    else:
                        wait_for_guest_tools(cloned, GUEST_TOOLS_TIMEOUT)

                if options.wait_on_port:
                    runner.wait_for_port(cloned, options.wait_on_port)

                if network_configs:
                    wait_for_guest_nics(cloned)

                node = self._node_record(cloned, self._field_names(content))
        except VSphereError as e:
            record_provision_failure(type(e).__name__)
            raise
        except vmodl.MethodFault as e:
            record_provision_failure(type(e).__name__)
            log_error(f"[clone] vSphere rejected provisioning of '{name}': {e.msg}", e)
            raise ProviderError(f"Provisioning of '{name}' failed: {e.msg}") from e

        record_node_provisioned(group)
        log_event(
            f"[clone] Created node '{name}' (group={group}, image={template.image_id}, "
            f"cpus={hardware.num_cpus}, memory={hardware.ram_mb}MiB, "
            f"volumes={len(hardware.volumes)}, networks={len(network_configs)})"
        )
        return {
            "node": node,
            "credentials": {"user": VM_LOGIN_USER, "password": self.init_password},
        }

    # ------------------------------------------------------------------
    # Listing / lookup
    # ------------------------------------------------------------------
    def list_nodes(self) -> List[Dict[str, Any]]:
        """
        All non-template VMs. Degrades to an empty list on any failure.
        """
        try:
            with self.session_factory() as session:
                content = session.content
                field_names = self._field_names(content)
                return [
                    self._node_record(vm, field_names)
                    for vm in find_all(content, vim.VirtualMachine)
                    if not is_template(vm)
                ]
        except Exception as e:  # noqa: BLE001
            log_error(f"[node] Can't list nodes: {e}")
            return []

    def list_nodes_by_ids(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        wanted = set(ids)
        return [node for node in self.list_nodes() if node["id"] in wanted]

    def get_node(self, name: str) -> Dict[str, Any]:
        with self.session_factory() as session:
            content = session.content
            return self._node_record(find_vm(content, name), self._field_names(content))

    def get_node_state(self, name: str) -> Dict[str, Any]:
        node = self.get_node(name)
        return {
            "name": node["name"],
            "power_state": node["power_state"],
            "status": node["status"],
            "tools_status": node["tools_status"],
            "ip_address": node["ip_address"],
        }

    def list_images(self) -> List[Dict[str, Any]]:
        """
        Templates usable as images. Degrades to an empty list on any failure.
        """
        try:
            with self.session_factory() as session:
                return [
                    self._image_record(vm)
                    for vm in find_all(session.content, vim.VirtualMachine)
                    if is_template(vm)
                ]
        except Exception as e:  # noqa: BLE001
            log_error(f"[image] Can't list images: {e}")
            return []

    def get_image(self, name: str) -> Dict[str, Any]:
        with self.session_factory() as session:
            return self._image_record(self._get_template(session.content, name))

    @staticmethod
    def list_hardware_profiles() -> List[Dict[str, Any]]:
        return list_hardware_profiles()

    @staticmethod
    def list_locations() -> List[Dict[str, Any]]:
        # placement is driven by VSPHERE_TARGET_HOST, not by locations
        return []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def destroy_node(self, name: str) -> None:
        """
        Power the node off (best effort) then destroy it.

        A failed power off is logged and the destroy is attempted anyway;
        a failed destroy is raised.
        """
        with self.session_factory() as session:
            vm = find_vm(session.content, name)

            if vm.runtime.powerState != POWERED_OFF:
                try:
                    wait_for_task(vm.PowerOffVM_Task(), kind="power-off")
                    log_event(f"[node] VM '{name}' powered off")
                except (TaskFailed, vmodl.MethodFault) as e:
                    log_error(f"[node] VM '{name}' could not be powered off: {e}")

            try:
                wait_for_task(vm.Destroy_Task(), kind="destroy")
            except TaskFailed:
                log_error(f"[node] Can't destroy vm '{name}'")
                raise
            except vmodl.MethodFault as e:
                log_error(f"[node] Can't destroy vm '{name}': {e.msg}", e)
                raise ProviderError(f"Failed to destroy '{name}': {e.msg}") from e

        record_node_destroyed()
        log_event(f"[node] VM '{name}' destroyed")

    def reboot_node(self, name: str) -> None:
        with self.session_factory() as session:
            vm = find_vm(session.content, name)
            try:
                vm.RebootGuest()
            except vmodl.MethodFault as e:
                log_error(f"[node] Can't reboot vm '{name}': {e.msg}", e)
                raise ProviderError(f"Failed to reboot '{name}': {e.msg}") from e
        log_event(f"[node] VM '{name}' rebooted")

    def resume_node(self, name: str) -> None:
        """
        Power on a powered off node; any other state is left alone.
        """
        with self.session_factory() as session:
            vm = find_vm(session.content, name)
            if vm.runtime.powerState != POWERED_OFF:
                log_event(f"[node] VM '{name}' can't be resumed from state={vm.runtime.powerState}")
                return
            try:
                wait_for_task(vm.PowerOnVM_Task(), kind="power-on")
            except TaskFailed:
                log_error(f"[node] Can't resume vm '{name}'")
                raise
        log_event(f"[node] VM '{name}' resumed")

    def suspend_node(self, name: str) -> None:
        with self.session_factory() as session:
            vm = find_vm(session.content, name)
            try:
                wait_for_task(vm.SuspendVM_Task(), kind="suspend")
            except TaskFailed:
                log_error(f"[node] Can't suspend vm '{name}'")
                raise
        log_event(f"[node] VM '{name}' suspended")

    # ------------------------------------------------------------------
    # Template flag
    # ------------------------------------------------------------------
    def mark_as_template(self, name: str) -> Dict[str, Any]:
        with self.session_factory() as session:
            content = session.content
            vm = find_vm(content, name)
            with TemplateLockRegistry.for_vm(vm._moId):
                if not is_template(vm):
                    vm.MarkAsTemplate()
                    log_event(f"[template] VM '{name}' marked as template")
            return self._image_record(vm)

    def mark_as_virtual_machine(self, name: str) -> Dict[str, Any]:
        with self.session_factory() as session:
            content = session.content
            vm = find_vm(content, name)
            host = target_host(content, self.target_host_name)
            resource_pool = self._resource_pool(content, host)
            with TemplateLockRegistry.for_vm(vm._moId):
                if is_template(vm):
                    vm.MarkAsVirtualMachine(pool=resource_pool, host=host)
                    log_event(f"[template] Template '{name}' turned back into a VM on {host.name}")
            return self._node_record(vm, self._field_names(content))

"""
Device delta between a template's virtual hardware and a requested node.

reconcile() works on the template's device list and returns plain
dataclasses so the delta can be inspected (and compared) without a
vCenter; build_device_changes() turns that delta into the
vim.vm.device.VirtualDeviceSpec list attached to the clone ConfigSpec.
"""
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

from pyVmomi import vim

from core.logger import log_event
from core.models import Hardware, TemplateOptions
from core.network import NetworkConfig

KB_PER_GB = 1024 * 1024
DISK_MODE = "persistent"
# SCSI unit 7 is taken by the controller itself
SCSI_CONTROLLER_UNIT = 7

DeviceSpec = vim.vm.device.VirtualDeviceSpec


@dataclass(frozen=True)
class RemoveDevice:
    device: Any

    operation = "remove"
    file_operation = None


@dataclass(frozen=True)
class AttachMedia:
    """Point a template CD-ROM or floppy drive at an image on the target datastore."""

    device: Any
    file_name: str

    operation = "edit"
    file_operation = None


@dataclass(frozen=True)
class AddDisk:
    controller_key: int
    unit_number: int
    capacity_kb: int
    file_name: str
    disk_mode: str = DISK_MODE
    # None: vSphere assigns the key when the spec is applied
    key: Optional[int] = None

    operation = "add"
    file_operation = "create"


@dataclass(frozen=True)
class AddNic:
    key: int
    network_name: str
    label: str
    summary: str
    address_type: str

    operation = "add"
    file_operation = None


DeviceChange = Union[RemoveDevice, AttachMedia, AddDisk, AddNic]


def datastore_path(datastore_name: str, path: str) -> str:
    return f"[{datastore_name}] {path}"


def _is_disk(device) -> bool:
    return isinstance(device, vim.vm.device.VirtualDisk)


def _next_unit(unit_number: int) -> int:
    unit_number += 1
    if unit_number == SCSI_CONTROLLER_UNIT:
        unit_number += 1
    return unit_number


def disk_additions(
    controller,
    volumes,
    existing_disks: int,
    datastore_name: str,
    vm_name: str,
) -> List[AddDisk]:
    additions: List[AddDisk] = []
    unit_number = existing_disks
    for volume in volumes:
        unit_number = _next_unit(unit_number)
        additions.append(
            AddDisk(
                controller_key=controller.key,
                unit_number=unit_number,
                capacity_kb=int(volume.size_gb) * KB_PER_GB,
                file_name=datastore_path(
                    datastore_name, f"{vm_name}/{vm_name}{unit_number}.vmdk"
                ),
            )
        )
    return additions


def nic_additions(network_configs: Sequence[NetworkConfig]) -> List[AddNic]:
    return [
        AddNic(
            key=index,
            network_name=config.network_name,
            label=f"{config.nic_name} {index + 1}",
            summary=config.network_name,
            address_type=config.address_type,
        )
        for index, config in enumerate(network_configs)
    ]


def reconcile(
    devices: Sequence[Any],
    hardware: Hardware,
    network_configs: Sequence[NetworkConfig],
    options: TemplateOptions,
    datastore_name: str,
    vm_name: str,
) -> List[DeviceChange]:
    """
    Build the ordered device delta for cloning 'devices' into 'vm_name'.

    - template NICs are always removed, fresh ones are added per network
    - CD-ROM / floppy drives get the requested image attached, if any
    - every requested volume becomes a new disk on the first SCSI controller
    """
    existing_disks = 0
    current_capacity_kb = 0
    for device in devices:
        if _is_disk(device):
            existing_disks += 1
            current_capacity_kb += device.capacityInKB or 0

    log_event(
        f"[hardware] Template for '{vm_name}' has {existing_disks} disk(s), "
        f"{current_capacity_kb // KB_PER_GB}GB total"
    )

    delta: List[DeviceChange] = []
    controller_seen = False
    for device in devices:
        if isinstance(device, vim.vm.device.VirtualEthernetCard):
            delta.append(RemoveDevice(device=device))
        elif isinstance(device, vim.vm.device.VirtualCdrom):
            if options.iso_file_name:
                delta.append(
                    AttachMedia(
                        device=device,
                        file_name=datastore_path(datastore_name, options.iso_file_name),
                    )
                )
        elif isinstance(device, vim.vm.device.VirtualFloppy):
            if options.flp_file_name:
                delta.append(
                    AttachMedia(
                        device=device,
                        file_name=datastore_path(datastore_name, options.flp_file_name),
                    )
                )
        elif isinstance(device, vim.vm.device.VirtualSCSIController) and not controller_seen:
            controller_seen = True
            delta.extend(
                disk_additions(
                    device, hardware.volumes, existing_disks, datastore_name, vm_name
                )
            )

    delta.extend(nic_additions(network_configs))
    return delta


# ----------------------------------------------------------------------
# Translation to pyVmomi specs
# ----------------------------------------------------------------------
def _connected() -> vim.vm.device.VirtualDevice.ConnectInfo:
    return vim.vm.device.VirtualDevice.ConnectInfo(startConnected=True, connected=True)


def _remove_spec(change: RemoveDevice) -> DeviceSpec:
    return DeviceSpec(operation=DeviceSpec.Operation.remove, device=change.device)


def _media_spec(change: AttachMedia, datastore) -> DeviceSpec:
    device = change.device
    if isinstance(device, vim.vm.device.VirtualCdrom):
        backing = vim.vm.device.VirtualCdrom.IsoBackingInfo()
    else:
        backing = vim.vm.device.VirtualFloppy.ImageBackingInfo()
    backing.fileName = change.file_name
    backing.datastore = datastore
    device.backing = backing
    device.connectable = _connected()
    return DeviceSpec(operation=DeviceSpec.Operation.edit, device=device)


def _disk_spec(change: AddDisk, temporary_key: int) -> DeviceSpec:
    disk = vim.vm.device.VirtualDisk()
    disk.backing = vim.vm.device.VirtualDisk.FlatVer2BackingInfo(
        fileName=change.file_name,
        diskMode=change.disk_mode,
    )
    disk.controllerKey = change.controller_key
    disk.unitNumber = change.unit_number
    disk.capacityInKB = change.capacity_kb
    # negative keys are placeholders vSphere replaces on apply
    disk.key = change.key if change.key is not None else temporary_key
    return DeviceSpec(
        operation=DeviceSpec.Operation.add,
        fileOperation=DeviceSpec.FileOperation.create,
        device=disk,
    )


def _nic_spec(change: AddNic) -> DeviceSpec:
    nic = vim.vm.device.VirtualVmxnet3()
    nic.key = change.key
    nic.addressType = change.address_type
    nic.backing = vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(
        deviceName=change.network_name
    )
    nic.deviceInfo = vim.Description(label=change.label, summary=change.summary)
    nic.connectable = _connected()
    return DeviceSpec(operation=DeviceSpec.Operation.add, device=nic)


def build_device_changes(delta: Sequence[DeviceChange], datastore) -> List[DeviceSpec]:
    specs: List[DeviceSpec] = []
    temporary_key = 0
    for change in delta:
        if isinstance(change, RemoveDevice):
            specs.append(_remove_spec(change))
        elif isinstance(change, AttachMedia):
            specs.append(_media_spec(change, datastore))
        elif isinstance(change, AddDisk):
            temporary_key -= 1
            specs.append(_disk_spec(change, temporary_key))
        elif isinstance(change, AddNic):
            specs.append(_nic_spec(change))
        else:
            raise TypeError(f"Unsupported device change: {change!r}")
    return specs

from typing import List, Optional

from pydantic import BaseModel, Field

from config.settings import DEFAULT_CORES, DEFAULT_MEMORY_MB
from core.hardware_profiles import get_hardware_profile
from core.models import Hardware, NodeTemplate, TemplateOptions, Volume


class VolumeSchema(BaseModel):
    size_gb: int = Field(..., ge=1, description="Disk size in GB")


class HardwareSchema(BaseModel):
    """
    Explicit hardware for a node. Ignored when 'hardware_id' names a
    catalog profile.
    """

    cores: int = Field(DEFAULT_CORES, ge=1, description="Number of CPU cores")
    ram_mb: int = Field(DEFAULT_MEMORY_MB, ge=256, description="RAM in MiB")
    volumes: List[VolumeSchema] = Field(
        default_factory=list,
        description="Disks added on top of the template's own disks",
    )


class TemplateOptionsSchema(BaseModel):
    networks: List[str] = Field(default_factory=list, description="Port groups to attach, in NIC order")
    tags: List[str] = Field(default_factory=list)
    iso_file_name: Optional[str] = Field(None, description="ISO on the target datastore to mount")
    flp_file_name: Optional[str] = Field(None, description="Floppy image on the target datastore")
    post_configuration: bool = Field(
        False,
        description="Rewrite NIC config, hostname and grow the root volume inside the guest",
    )
    wait_on_port: Optional[int] = Field(None, ge=1, le=65535)
    nic_name: str = "Network adapter"
    address_type: str = Field("generated", description="'generated' means DHCP in the guest")


class NodeCreateSchema(BaseModel):
    """
    Schema for provisioning a node from a vSphere template.

    'group' is written to the node's group custom field together with the
    tags, and labels the provisioning metrics.
    """

    group: str = Field(..., description="Group the node belongs to")
    name: str = Field(..., description="Unique node name, also its hostname")
    image_id: str = Field(..., description="Name of the template VM to clone")
    hardware_id: Optional[str] = Field(None, description="Catalog profile id, e.g. C2_M4_D50")
    hardware: HardwareSchema = Field(default_factory=HardwareSchema)
    options: TemplateOptionsSchema = Field(default_factory=TemplateOptionsSchema)

    def to_template(self) -> NodeTemplate:
        profile = get_hardware_profile(self.hardware_id) if self.hardware_id else None
        if self.hardware_id and profile is None:
            raise ValueError(f"Unknown hardware profile '{self.hardware_id}'")
        if profile is not None:
            hardware = Hardware(
                cores=profile["cores"],
                ram_mb=profile["ram_mb"],
                volumes=[Volume(size_gb=v["size_gb"]) for v in profile["volumes"]],
            )
        else:
            hardware = Hardware(
                cores=self.hardware.cores,
                ram_mb=self.hardware.ram_mb,
                volumes=[Volume(size_gb=v.size_gb) for v in self.hardware.volumes],
            )
        return NodeTemplate(
            image_id=self.image_id,
            hardware=hardware,
            options=TemplateOptions(**self.options.model_dump()),
        )

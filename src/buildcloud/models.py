"""
Pydantic models for the CI service's build cloud resources.

Field names are snake_case in Python and camelCase on the wire.
Every wire model keeps fields it does not know about, so a
read-modify-write round trip never drops settings the service added.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OsType(str, Enum):
    """Guest operating system of a build worker image."""

    WINDOWS = "Windows"
    LINUX = "Linux"


class CloudType(str, Enum):
    """Build cloud types this tool knows how to provision."""

    HYPERV = "HyperV"


class ReconcileOutcome(str, Enum):
    """Terminal state of a cloud reconciliation."""

    CREATED = "created"
    UPDATED = "updated"


def _none_as_empty(value: Any) -> Any:
    """A null block on the wire reads as an empty one."""
    return {} if value is None else value


def _as_int(value: Any) -> Any:
    """Coerce numeric-looking input ('4096', 2.0) to int."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float, str)):
        return int(float(value))
    return value


class WireModel(BaseModel):
    """Base for every model that is sent to or read from the service."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


# ---------------------------------------------------------------------------
# Cloud settings
# ---------------------------------------------------------------------------

class Image(WireModel):
    """A named reference to a bootable virtual disk."""

    name: str
    vhd_path: str = Field(alias="vhdPath")
    os_type: OsType = Field(default=OsType.WINDOWS, alias="osType")
    is_default: bool = Field(default=False, alias="isDefault")


class ImageList(WireModel):
    entries: List[Image] = Field(default_factory=list, alias="list")

    @field_validator("entries", mode="before")
    @classmethod
    def _none_as_list(cls, v: Any) -> Any:
        return [] if v is None else v

    def find(self, name: str) -> Optional[Image]:
        """Return the image called ``name``, if present."""
        for image in self.entries:
            if image.name == name:
                return image
        return None


class VmConfiguration(WireModel):
    cpu_cores: int = Field(default=2, alias="cpuCores")
    ram_mb: int = Field(default=4096, alias="ramMb")
    vm_directory: str = Field(default="", alias="vmDirectory")

    @field_validator("cpu_cores", "ram_mb", mode="before")
    @classmethod
    def _coerce_int(cls, v: Any) -> Any:
        return _as_int(v)


class Networking(WireModel):
    use_dhcp: bool = Field(default=False, alias="useDHCP")
    virtual_switch_name: str = Field(default="", alias="virtualSwitchName")
    dns_servers: str = Field(default="8.8.8.8; 8.8.4.4", alias="dnsServers")
    subnet_mask: str = Field(default="255.255.255.0", alias="subnetMask")
    start_ip_address: str = Field(default="10.118.232.100", alias="startIPAddress")
    default_gateway: str = Field(default="10.118.232.1", alias="defaultGateway")


class Provisioning(WireModel):
    preheated_vms: int = Field(default=2, alias="preheatedVMs")

    @field_validator("preheated_vms", mode="before")
    @classmethod
    def _coerce_int(cls, v: Any) -> Any:
        return _as_int(v)


class CloudSettings(WireModel):
    """The ``settings.cloudSettings`` block of a build cloud."""

    vm_configuration: Optional[VmConfiguration] = Field(
        default_factory=VmConfiguration, alias="vmConfiguration",
    )
    networking: Optional[Networking] = Field(default_factory=Networking)
    provisioning: Optional[Provisioning] = Field(default_factory=Provisioning)
    images: ImageList = Field(default_factory=ImageList)

    @field_validator("images", mode="before")
    @classmethod
    def _images_not_null(cls, v: Any) -> Any:
        return _none_as_empty(v)


class FailureStrategy(WireModel):
    job_start_timeout_seconds: int = Field(default=300, alias="jobStartTimeoutSeconds")
    provisioning_attempts: int = Field(default=3, alias="provisioningAttempts")


class BuildCloudSettings(WireModel):
    artifact_storage_name: Optional[str] = Field(default=None, alias="artifactStorageName")
    build_cache_name: Optional[str] = Field(default=None, alias="buildCacheName")
    failure_strategy: Optional[FailureStrategy] = Field(
        default_factory=FailureStrategy, alias="failureStrategy",
    )
    cloud_settings: CloudSettings = Field(
        default_factory=CloudSettings, alias="cloudSettings",
    )

    @field_validator("cloud_settings", mode="before")
    @classmethod
    def _cloud_settings_not_null(cls, v: Any) -> Any:
        return _none_as_empty(v)


# ---------------------------------------------------------------------------
# Build cloud
# ---------------------------------------------------------------------------

class BuildCloudSummary(WireModel):
    """One entry of the build cloud list endpoint (no settings)."""

    build_cloud_id: int = Field(alias="buildCloudId")
    name: str
    cloud_type: str = Field(alias="cloudType")


class BuildCloud(WireModel):
    """A complete build cloud resource as the service stores it."""

    build_cloud_id: Optional[int] = Field(default=None, alias="buildCloudId")
    name: str
    cloud_type: str = Field(default=CloudType.HYPERV.value, alias="cloudType")
    host_authorization_token: Optional[str] = Field(
        default=None, alias="hostAuthorizationToken",
    )
    workers_capacity: Optional[int] = Field(default=20, alias="workersCapacity")
    settings: BuildCloudSettings = Field(default_factory=BuildCloudSettings)

    @field_validator("settings", mode="before")
    @classmethod
    def _settings_not_null(cls, v: Any) -> Any:
        return _none_as_empty(v)

    @property
    def images(self) -> ImageList:
        """Shortcut to the cloud's image list."""
        return self.settings.cloud_settings.images

    def mark_images_changed(self) -> None:
        """Flag the image list and every block above it as set.

        Update payloads only carry fields read from the service or assigned
        since, so a merged list must be marked even when the service sent none.
        """
        images = self.images
        images.entries = images.entries
        self.settings.cloud_settings.images = images
        self.settings.cloud_settings = self.settings.cloud_settings
        self.settings = self.settings

    def to_payload(self) -> dict:
        """Serialize a new cloud for POST. The id is omitted until the service assigns one."""
        data = self.model_dump(by_alias=True, mode="json")
        if data.get("buildCloudId") is None:
            data.pop("buildCloudId", None)
        return data

    def to_update_payload(self) -> dict:
        """Serialize for PUT: only fields read from the service or set since.

        Client-side defaults never reach the service, so an update leaves
        every setting this tool does not manage as the service had it.
        """
        return self.model_dump(by_alias=True, mode="json", exclude_unset=True)


class WorkerImage(WireModel):
    """A build worker image known to the service."""

    name: str
    os_type: str = Field(default=OsType.WINDOWS.value, alias="osType")
    build_worker_image_id: Optional[int] = Field(default=None, alias="buildWorkerImageId")

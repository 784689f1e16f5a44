"""
Provisioning settings — everything one run needs, in one object.

Settings are layered: YAML config file, then BUILDCLOUD_* environment
variables, then explicit overrides (the CLI flags). The resulting
ProvisionSettings is passed to every step; nothing reads global state.
"""

from __future__ import annotations

import logging
import os
import platform
import re
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from . import BUILDCLOUD_CONFIG
from .errors import PreconditionError
from .models import OsType

logger = logging.getLogger(__name__)

PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]{0,23}$")
ENV_PREFIX = "BUILDCLOUD_"
ENV_KEYS = ("endpoint", "api_token", "account_name", "common_prefix")

DEFAULT_TEMPLATES_DIR = Path("packer")
DEFAULT_AGENT_INSTALLER = "host-agent.msi"


def _system_drive() -> str:
    return os.environ.get("SYSTEMDRIVE", "C:")


def default_vm_directory() -> str:
    return f"{_system_drive()}\\buildcloud\\vms"


def default_images_directory() -> str:
    return f"{_system_drive()}\\buildcloud\\images"


class ProvisionSettings(BaseModel):
    """All operator input for one provisioning run."""

    endpoint: str
    api_token: str
    account_name: Optional[str] = None

    common_prefix: str = "buildcloud"
    host_name: str = Field(default_factory=platform.node)

    cpu_cores: int = Field(default=2, ge=1, le=64)
    ram_mb: int = Field(default=4096, ge=512)
    disk_size_mb: int = Field(default=60000, ge=10000)
    preheated_vms: int = Field(default=2, ge=0, le=32)
    vm_directory: str = Field(default_factory=default_vm_directory)
    images_directory: str = Field(default_factory=default_images_directory)
    dns_servers: str = "8.8.8.8; 8.8.4.4"
    subnet_mask: str = "255.255.255.0"

    image_os: OsType = OsType.WINDOWS
    image_name: Optional[str] = None
    image_description: str = ""
    image_template: Optional[Path] = None
    templates_directory: Path = DEFAULT_TEMPLATES_DIR
    image_features: List[str] = Field(default_factory=list)
    image_custom_script: Optional[Path] = None
    image_custom_script_after_reboot: Optional[Path] = None
    vhd_path: Optional[Path] = None
    iso_url: Optional[str] = None
    iso_checksum: Optional[str] = None
    answer_file: Optional[Path] = None
    packer_builder: str = "hyperv-iso"

    agent_installer: str = DEFAULT_AGENT_INSTALLER
    skip_disclaimer: bool = False

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"'{v}' is not an absolute http(s) URL")
        return v

    @field_validator("api_token")
    @classmethod
    def _check_token(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("API token is empty")
        return v

    @field_validator("common_prefix")
    @classmethod
    def _check_prefix(cls, v: str) -> str:
        if not PREFIX_PATTERN.match(v):
            raise ValueError(
                f"'{v}' must be 1-24 letters, digits or dashes, starting with a letter or digit"
            )
        return v

    @field_validator("image_features", mode="before")
    @classmethod
    def _split_features(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [f.strip() for f in v.split(",") if f.strip()]
        return v

    @model_validator(mode="after")
    def _fill_defaults(self) -> "ProvisionSettings":
        if not self.image_name:
            self.image_name = self.image_os.value
        if self.api_token.startswith("v2.") and not self.account_name:
            raise ValueError("v2 API tokens require an account name")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def builds_image(self) -> bool:
        """False when the operator supplied an existing disk."""
        return self.vhd_path is None

    @property
    def template_path(self) -> Path:
        if self.image_template:
            return self.image_template
        return self.templates_directory / f"hyperv-{self.image_os.value.lower()}.json"

    @property
    def answer_file_path(self) -> Path:
        if self.answer_file:
            return self.answer_file
        name = "autounattend.xml" if self.image_os == OsType.WINDOWS else "preseed.cfg"
        return self.templates_directory / "answer_files" / name


def _read_config_file(path: Path) -> Dict[str, Any]:
    """Load a YAML settings file.

    Raises:
        PreconditionError: If the file is unreadable or not a mapping.
    """
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise PreconditionError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise PreconditionError(f"Config file {path} must contain a mapping")
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def _read_environment() -> Dict[str, str]:
    values = {}
    for key in ENV_KEYS:
        env_value = os.environ.get(ENV_PREFIX + key.upper())
        if env_value:
            values[key] = env_value
    return values


def load_settings(
    config_file: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ProvisionSettings:
    """Merge config file, environment and overrides into validated settings.

    Args:
        config_file: YAML file; defaults to ~/.buildcloud/config.yaml when present.
        overrides: Explicit values (None entries are ignored).

    Returns:
        ProvisionSettings ready for a run.

    Raises:
        PreconditionError: If any value is missing or invalid.
    """
    merged: Dict[str, Any] = {}

    if config_file is not None:
        merged.update(_read_config_file(config_file))
    else:
        default_file = Path(BUILDCLOUD_CONFIG).expanduser()
        if default_file.exists():
            logger.debug("Loading settings from %s", default_file)
            merged.update(_read_config_file(default_file))

    merged.update(_read_environment())
    merged.update({k: v for k, v in (overrides or {}).items() if v not in (None, (), [])})

    try:
        return ProvisionSettings(**merged)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        )
        raise PreconditionError(f"Invalid settings: {problems}") from exc


def check_inputs(settings: ProvisionSettings) -> None:
    """Verify that every local file the run depends on exists.

    Raises:
        PreconditionError: On the first missing file.
    """
    if settings.vhd_path is not None:
        if not settings.vhd_path.is_file():
            raise PreconditionError(f"VHD not found: {settings.vhd_path}")
        return

    if not settings.template_path.is_file():
        raise PreconditionError(f"Packer template not found: {settings.template_path}")
    for script in (settings.image_custom_script, settings.image_custom_script_after_reboot):
        if script is not None and not script.is_file():
            raise PreconditionError(f"Custom script not found: {script}")
    if settings.answer_file is not None and not settings.answer_file.is_file():
        raise PreconditionError(f"Answer file not found: {settings.answer_file}")


def check_agent_installer(settings: ProvisionSettings) -> None:
    """The agent installer must be a URL or an existing local file."""
    installer = settings.agent_installer
    if urlparse(installer).scheme in ("http", "https"):
        return
    if not Path(installer).is_file():
        raise PreconditionError(f"Host agent installer not found: {installer}")

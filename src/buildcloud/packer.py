"""
Image Builder — run Packer and pick the disk out of its manifest.

The Packer template is opaque to this module. What it controls is the
variable set (typed and validated before Packer ever starts) and the
output contract: after a build, the manifest post-processor must have
written ``builds[0].files[]`` to the requested manifest path, and the
first file that looks like a virtual disk is the result.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import re
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, model_validator

from .errors import ImageBuildError

logger = logging.getLogger(__name__)

VHD_PATTERN = re.compile(r"\.vhdx?$", re.IGNORECASE)
MANIFEST_NAME = "packer-manifest.json"


class PackerVariables(BaseModel):
    """The ``-var`` set passed to Packer."""

    install_user: str = Field(min_length=1)
    install_password: str = Field(min_length=1)
    disk_size: int = Field(gt=0)
    switch_name: str = Field(min_length=1)
    iso_url: Optional[str] = None
    iso_checksum: Optional[str] = None
    http_port_min: int = Field(ge=1, le=65535)
    http_port_max: int = Field(ge=1, le=65535)
    output_directory: str
    manifest_file: str
    vm_name: str = Field(min_length=1)
    cpus: int = Field(default=2, ge=1)
    memory: int = Field(default=4096, ge=512)
    image_description: str = ""
    image_features: str = ""
    custom_script: str = ""
    custom_script_after_reboot: str = ""
    datemark: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S"),
    )

    @model_validator(mode="after")
    def _check_ports(self) -> "PackerVariables":
        if self.http_port_min > self.http_port_max:
            raise ValueError("http_port_min must not exceed http_port_max")
        return self

    def to_args(self) -> List[str]:
        """Render as ``-var key=value`` pairs; unset optional values are omitted."""
        args: List[str] = []
        for key, value in self.model_dump().items():
            if value is None or value == "":
                continue
            args += ["-var", f"{key}={value}"]
        return args


def encode_script(path: Optional[Path]) -> str:
    """Base64 of a custom script file, '' when none is given."""
    if path is None:
        return ""
    return base64.b64encode(path.read_bytes()).decode("ascii")


def iso_checksum_for(iso_url: Optional[str], checksum: Optional[str]) -> Optional[str]:
    """Checksum of the install media.

    An explicit checksum wins. A local ISO gets its SHA-256 computed;
    a remote ISO without a checksum returns None and the template decides.
    """
    if checksum:
        return checksum
    if not iso_url:
        return None
    if urlparse(iso_url).scheme in ("http", "https", "ftp"):
        return None

    path = Path(iso_url)
    if not path.is_file():
        return None
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(1024 * 1024), b""):
            digest.update(chunk)
    return f"sha256:{digest.hexdigest()}"


def read_manifest(manifest_file: Path, base_dir: Path) -> Path:
    """Extract the virtual disk path from a Packer manifest.

    Args:
        manifest_file: Manifest written by the build.
        base_dir: Directory relative artifact names resolve against.

    Returns:
        Path to the first ``.vhd``/``.vhdx`` artifact of the first build.

    Raises:
        ImageBuildError: If the manifest is missing, unreadable or has no disk.
    """
    if not manifest_file.is_file():
        raise ImageBuildError(
            f"Packer manifest not found at {manifest_file}; the image build failed"
        )
    try:
        data = json.loads(manifest_file.read_text())
        files = data["builds"][0].get("files") or []
    except (OSError, ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
        raise ImageBuildError(f"Cannot read Packer manifest {manifest_file}: {exc}") from exc

    for entry in files:
        name = entry.get("name", "") if isinstance(entry, dict) else ""
        if VHD_PATTERN.search(name):
            path = Path(name)
            return path if path.is_absolute() else base_dir / path
    raise ImageBuildError(f"No virtual disk listed in Packer manifest {manifest_file}")


class ImageBuilder:
    """Invoke Packer for one template.

    Args:
        packer: Packer executable.
        builder: Builder to run (``--only``).
    """

    def __init__(self, packer: str = "packer", builder: str = "hyperv-iso") -> None:
        self._packer = packer
        self._builder = builder

    def command(self, template_path: Path, variables: PackerVariables) -> List[str]:
        return [
            self._packer, "build", f"--only={self._builder}",
            *variables.to_args(),
            str(template_path),
        ]

    def build_image(
        self,
        template_path: Path,
        variables: PackerVariables,
        output_dir: Path,
    ) -> Path:
        """Build the image and return the disk path.

        Packer output streams straight to the console; builds take a long
        time and there is no timeout.

        Raises:
            ImageBuildError: If Packer leaves no manifest or no disk behind.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        cmd = self.command(template_path.resolve(), variables)
        logger.info("Running packer build (%s) in %s", self._builder, output_dir)

        try:
            result = subprocess.run(cmd, cwd=output_dir)
        except OSError as exc:
            raise ImageBuildError(f"Cannot start Packer: {exc}") from exc
        if result.returncode != 0:
            logger.warning("packer exited with code %d", result.returncode)

        return read_manifest(Path(variables.manifest_file), output_dir)

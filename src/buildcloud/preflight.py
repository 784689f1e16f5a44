"""
Preflight system checks — verify the host has the tools a run needs.

Checks for:
  - PowerShell (drives every Hyper-V and firewall change)
  - Hyper-V PowerShell module (Get-VMSwitch and friends)
  - Packer (only when building a fresh image)
  - msiexec (installs the host agent)

Each check returns a ToolCheck with:
  - Whether the tool is installed
  - Current version (if installed)
  - A suggested install command and download URL as fallback

Nothing here installs anything; a missing required tool aborts the
run before the host is touched.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import PreconditionError


class ToolStatus(str, Enum):
    """Status of a system tool."""
    INSTALLED = "installed"
    MISSING = "missing"


@dataclass
class ToolCheck:
    """Result of checking a single system tool."""

    name: str
    status: ToolStatus
    required: bool
    version: str = ""
    install_cmd: str = ""
    download_url: str = ""
    install_note: str = ""

    @property
    def installed(self) -> bool:
        """Whether the tool is installed."""
        return self.status == ToolStatus.INSTALLED

    @property
    def ok(self) -> bool:
        """Whether this check passes (installed, or optional and missing)."""
        return self.installed or not self.required


@dataclass
class PreflightResult:
    """Combined result of all preflight checks."""

    checks: List[ToolCheck] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        """True if all required tools pass."""
        return all(c.ok for c in self.checks)

    @property
    def required_missing(self) -> list[ToolCheck]:
        """List of required tools that are missing."""
        return [c for c in self.checks if c.required and not c.installed]

    def raise_for_missing(self) -> None:
        """Raise PreconditionError naming every missing required tool."""
        missing = self.required_missing
        if missing:
            names = ", ".join(c.name for c in missing)
            raise PreconditionError(f"Required tools missing: {names}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _powershell_binary() -> Optional[str]:
    """Windows PowerShell first, PowerShell 7 as fallback."""
    for name in ("powershell", "pwsh"):
        if shutil.which(name):
            return name
    return None


def _first_line(cmd: list[str]) -> str:
    """First line of a command's stdout, or '' if it fails."""
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=15)
    except (OSError, subprocess.TimeoutExpired):
        return ""
    if result.returncode != 0:
        return ""
    lines = result.stdout.strip().splitlines()
    return lines[0][:60] if lines else ""


# ---------------------------------------------------------------------------
# Individual tool checks
# ---------------------------------------------------------------------------

def check_powershell() -> ToolCheck:
    """Check that PowerShell is on PATH."""
    binary = _powershell_binary()
    if binary:
        version = _first_line(
            [binary, "-NoProfile", "-Command", "$PSVersionTable.PSVersion.ToString()"]
        )
        return ToolCheck(
            name="PowerShell",
            status=ToolStatus.INSTALLED,
            required=True,
            version=version,
        )
    return ToolCheck(
        name="PowerShell",
        status=ToolStatus.MISSING,
        required=True,
        install_cmd="winget install --id Microsoft.PowerShell --accept-source-agreements --accept-package-agreements",
        download_url="https://aka.ms/powershell",
        install_note="All host networking is configured through PowerShell.",
    )


def check_hyperv() -> ToolCheck:
    """Check that the Hyper-V PowerShell module is available."""
    binary = _powershell_binary()
    found = ""
    if binary:
        found = _first_line([
            binary, "-NoProfile", "-Command",
            "(Get-Command Get-VMSwitch -ErrorAction SilentlyContinue).Version.ToString()",
        ])
    if found:
        return ToolCheck(
            name="Hyper-V",
            status=ToolStatus.INSTALLED,
            required=True,
            version=found,
        )
    return ToolCheck(
        name="Hyper-V",
        status=ToolStatus.MISSING,
        required=True,
        install_cmd="Enable-WindowsOptionalFeature -Online -FeatureName Microsoft-Hyper-V -All",
        download_url="https://learn.microsoft.com/virtualization/hyper-v-on-windows/quick-start/enable-hyper-v",
        install_note="Enable the Hyper-V feature and its PowerShell module, then reboot.",
    )


def check_packer(required: bool = True) -> ToolCheck:
    """Check if Packer is installed.

    Args:
        required: Whether an image will be built on this run.
    """
    if shutil.which("packer"):
        return ToolCheck(
            name="Packer",
            status=ToolStatus.INSTALLED,
            required=required,
            version=_first_line(["packer", "version"]),
        )
    return ToolCheck(
        name="Packer",
        status=ToolStatus.MISSING,
        required=required,
        install_cmd="winget install --id Hashicorp.Packer --accept-source-agreements --accept-package-agreements",
        download_url="https://developer.hashicorp.com/packer/install",
        install_note="Packer builds the base image. Not needed with --vhd-path.",
    )


def check_msiexec() -> ToolCheck:
    """Check that msiexec is available for the host agent install."""
    if shutil.which("msiexec"):
        return ToolCheck(name="msiexec", status=ToolStatus.INSTALLED, required=True)
    return ToolCheck(
        name="msiexec",
        status=ToolStatus.MISSING,
        required=True,
        install_note="Windows Installer ships with Windows; run on a Windows host.",
    )


# ---------------------------------------------------------------------------
# Full preflight
# ---------------------------------------------------------------------------

def run_preflight(build_image: bool = True) -> PreflightResult:
    """Run all preflight checks.

    Args:
        build_image: Whether Packer is required (False with --vhd-path).

    Returns:
        PreflightResult with all tool checks.
    """
    return PreflightResult(checks=[
        check_powershell(),
        check_hyperv(),
        check_packer(required=build_image),
        check_msiexec(),
    ])

"""Host Agent Installer — hand the endpoint and token to the agent MSI.

The agent installer itself is opaque. This module only resolves where
the MSI comes from (local file or download) and runs msiexec with the
two properties the agent needs.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests

from .errors import HostAgentInstallError

logger = logging.getLogger(__name__)

MSI_NAME = "host-agent.msi"
LOG_NAME = "host-agent-install.log"


def default_log_dir() -> Path:
    return Path(tempfile.gettempdir()) / "buildcloud"


def _download(url: str, target_dir: Path) -> Path:
    target = target_dir / (Path(urlparse(url).path).name or MSI_NAME)
    logger.info("Downloading host agent from %s", url)
    try:
        with requests.get(url, stream=True) as resp:
            resp.raise_for_status()
            with target.open("wb") as fh:
                for chunk in resp.iter_content(chunk_size=1024 * 1024):
                    fh.write(chunk)
    except requests.RequestException as exc:
        raise HostAgentInstallError(f"Cannot download host agent: {exc}") from exc
    return target


def resolve_installer(installer: str, download_dir: Path) -> Path:
    """Local MSI path for ``installer`` (a path or an http(s) URL)."""
    if urlparse(installer).scheme in ("http", "https"):
        return _download(installer, download_dir)
    path = Path(installer)
    if not path.is_file():
        raise HostAgentInstallError(f"Host agent installer not found: {installer}")
    return path


def msiexec_command(msi: Path, log_file: Path, endpoint: str, token: str) -> list[str]:
    return [
        "msiexec", "/i", str(msi),
        "/quiet", "/qn", "/norestart",
        "/log", str(log_file),
        f"SERVICE_URL={endpoint}",
        f"HOST_AUTH_TOKEN={token}",
    ]


def install(
    endpoint: str,
    authorization_token: str,
    installer: str = MSI_NAME,
    log_dir: Optional[Path] = None,
) -> Path:
    """Install the host agent and point it at the service.

    Args:
        endpoint: CI service base URL.
        authorization_token: The build cloud's host authorization token.
        installer: MSI path or download URL.
        log_dir: Where the msiexec log is kept; each run overwrites it.
            Downloads go to a temporary directory removed after the install.

    Returns:
        Path to the msiexec log file.

    Raises:
        HostAgentInstallError: If the download or msiexec fails.
    """
    logs = log_dir or default_log_dir()
    logs.mkdir(parents=True, exist_ok=True)
    log_file = logs / LOG_NAME

    with tempfile.TemporaryDirectory(prefix="buildcloud-agent-") as download_dir:
        msi = resolve_installer(installer, Path(download_dir))
        logger.info("Installing host agent from %s", msi)
        result = subprocess.run(
            msiexec_command(msi, log_file, endpoint, authorization_token),
            capture_output=True, text=True,
        )
    if result.returncode != 0:
        raise HostAgentInstallError(
            f"Host agent install failed (exit {result.returncode}); see {log_file}"
        )
    return log_file

"""Inject the generated install account into unattended-setup files."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path

from .credentials import Credentials

logger = logging.getLogger(__name__)

UNATTEND_NS = "urn:schemas-microsoft-com:unattend"
WCM_NS = "http://schemas.microsoft.com/WMIConfig/2002/State"

PRESEED_MARKER = "# buildcloud install account"


def _q(tag: str) -> str:
    return f"{{{UNATTEND_NS}}}{tag}"


def _set_text(parent: ET.Element, path: str, value: str) -> int:
    count = 0
    for element in parent.iterfind(path):
        element.text = value
        count += 1
    return count


def inject_windows_credentials(answer_file: Path, credentials: Credentials) -> int:
    """Rewrite the account names and passwords of an autounattend.xml in place.

    Touches AutoLogon and every LocalAccount. Returns the number of
    values written; zero means the file has nowhere to put them.
    """
    ET.register_namespace("", UNATTEND_NS)
    ET.register_namespace("wcm", WCM_NS)
    tree = ET.parse(answer_file)
    root = tree.getroot()

    user, password = credentials.install_user, credentials.install_password
    written = 0
    for autologon in root.iter(_q("AutoLogon")):
        written += _set_text(autologon, _q("Username"), user)
        written += _set_text(autologon, f"{_q('Password')}/{_q('Value')}", password)
    for account in root.iter(_q("LocalAccount")):
        written += _set_text(account, _q("Name"), user)
        written += _set_text(account, _q("DisplayName"), user)
        written += _set_text(account, f"{_q('Password')}/{_q('Value')}", password)

    tree.write(answer_file, encoding="utf-8", xml_declaration=True)
    if not written:
        logger.warning("No account fields found in %s", answer_file)
    return written


def preseed_account_block(credentials: Credentials) -> str:
    user, password = credentials.install_user, credentials.install_password
    return "\n".join([
        PRESEED_MARKER,
        f"d-i passwd/user-fullname string {user}",
        f"d-i passwd/username string {user}",
        f"d-i passwd/user-password password {password}",
        f"d-i passwd/user-password-again password {password}",
        "",
    ])


def inject_linux_credentials(preseed_file: Path, credentials: Credentials) -> None:
    """Write the account-creation directives at the end of a preseed file.

    A block written by an earlier run (everything from PRESEED_MARKER on)
    is replaced, so only the current install password is ever on disk.
    """
    text = preseed_file.read_text()
    marker_at = text.find(PRESEED_MARKER)
    if marker_at != -1:
        text = text[:marker_at]
    if text and not text.endswith("\n"):
        text += "\n"
    preseed_file.write_text(text + preseed_account_block(credentials))

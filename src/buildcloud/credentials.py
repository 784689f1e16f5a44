"""Per-run install credentials and the host authorization token."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass

DEFAULT_INSTALL_USER = "buildcloud"
PASSWORD_LENGTH = 16
HOST_TOKEN_LENGTH = 32

# Characters that survive XML, preseed, and command-line quoting unchanged.
_SYMBOLS = "!#%+-_=?"


@dataclass(frozen=True)
class Credentials:
    """Account baked into the base image.

    Shown to the operator once for manual recovery. Never sent to the
    CI service and never written anywhere except the answer files.
    """

    install_user: str
    install_password: str


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Random password with at least one upper, lower, digit and symbol.

    Windows setup rejects passwords that do not meet complexity rules,
    so every character class is guaranteed.
    """
    if length < 4:
        raise ValueError("password length must be at least 4")
    classes = [string.ascii_uppercase, string.ascii_lowercase, string.digits, _SYMBOLS]
    alphabet = "".join(classes)
    chars = [secrets.choice(c) for c in classes]
    chars += [secrets.choice(alphabet) for _ in range(length - len(classes))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def generate_credentials(install_user: str = DEFAULT_INSTALL_USER) -> Credentials:
    return Credentials(install_user=install_user, install_password=generate_password())


def generate_host_token(length: int = HOST_TOKEN_LENGTH) -> str:
    """Fresh alphanumeric host authorization token."""
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))

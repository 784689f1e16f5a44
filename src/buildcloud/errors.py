"""Exception taxonomy for a provisioning run.

Library code raises these; the CLI is the only place that catches
them, reports, and halts.
"""

from __future__ import annotations

from typing import Optional


class BuildCloudError(Exception):
    """Base class for every fatal provisioning failure."""


class PreconditionError(BuildCloudError):
    """Invalid input or missing tooling, raised before anything is mutated."""


class DuplicateCloudError(PreconditionError):
    """More than one build cloud carries this host's name."""

    def __init__(self, name: str, count: int) -> None:
        super().__init__(
            f"Found {count} build clouds named '{name}'. "
            "Remove the duplicates on the service and re-run."
        )
        self.name = name
        self.count = count


class ImageBuildError(BuildCloudError):
    """Packer did not produce the expected manifest or disk."""


class CloudTypeConflictError(BuildCloudError):
    """An existing cloud with this host's name has a different cloud type."""

    def __init__(self, name: str, actual: str, expected: str) -> None:
        super().__init__(
            f"Build cloud '{name}' already exists with type '{actual}', "
            f"expected '{expected}'. Rename or delete it first."
        )
        self.name = name
        self.actual = actual
        self.expected = expected


class ApiError(BuildCloudError):
    """The CI service answered a request with a non-2xx status."""

    def __init__(
        self,
        method: str,
        path: str,
        status_code: Optional[int] = None,
        body: str = "",
    ) -> None:
        detail = f"{status_code} {body}".strip() if status_code else body
        super().__init__(f"API {method} {path} failed: {detail}")
        self.method = method
        self.path = path
        self.status_code = status_code
        self.body = body


class HostCommandError(BuildCloudError):
    """A PowerShell command on the Hyper-V host exited non-zero."""

    def __init__(self, script: str, returncode: int, stderr: str) -> None:
        first_line = script.strip().splitlines()[0] if script.strip() else script
        super().__init__(
            f"Host command failed (exit {returncode}): {first_line}\n{stderr.strip()}"
        )
        self.script = script
        self.returncode = returncode
        self.stderr = stderr


class HostAgentInstallError(BuildCloudError):
    """The host agent installer exited non-zero."""

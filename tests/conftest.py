"""Shared test fixtures for buildcloud."""

from __future__ import annotations

import copy
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the operator's environment and config file out of every test."""
    for key in ("ENDPOINT", "API_TOKEN", "ACCOUNT_NAME", "COMMON_PREFIX"):
        monkeypatch.delenv(f"BUILDCLOUD_{key}", raising=False)
    monkeypatch.setattr(
        "buildcloud.config.BUILDCLOUD_CONFIG", str(tmp_path / "no-such-config.yaml"),
    )


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    """A templates directory with both Packer templates and answer files."""
    root = tmp_path / "packer"
    (root / "answer_files").mkdir(parents=True)
    (root / "hyperv-windows.json").write_text("{}")
    (root / "hyperv-linux.json").write_text("{}")
    (root / "answer_files" / "autounattend.xml").write_text(
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<unattend xmlns="urn:schemas-microsoft-com:unattend">\n'
        '  <settings pass="oobeSystem">\n'
        '    <component name="Microsoft-Windows-Shell-Setup">\n'
        "      <AutoLogon>\n"
        "        <Password><Value>PLACEHOLDER</Value><PlainText>true</PlainText></Password>\n"
        "        <Enabled>true</Enabled>\n"
        "        <Username>PLACEHOLDER</Username>\n"
        "      </AutoLogon>\n"
        "      <UserAccounts>\n"
        "        <LocalAccounts>\n"
        "          <LocalAccount>\n"
        "            <Password><Value>PLACEHOLDER</Value><PlainText>true</PlainText></Password>\n"
        "            <Group>administrators</Group>\n"
        "            <DisplayName>PLACEHOLDER</DisplayName>\n"
        "            <Name>PLACEHOLDER</Name>\n"
        "          </LocalAccount>\n"
        "        </LocalAccounts>\n"
        "      </UserAccounts>\n"
        "    </component>\n"
        "  </settings>\n"
        "</unattend>\n"
    )
    (root / "answer_files" / "preseed.cfg").write_text("d-i debian-installer/locale string en_US\n")
    return root


@pytest.fixture
def base_settings(tmp_path: Path, templates_dir: Path) -> dict:
    """Minimal valid overrides for load_settings()."""
    installer = tmp_path / "host-agent.msi"
    installer.write_bytes(b"msi")
    return {
        "endpoint": "https://ci.example.com/",
        "api_token": "secret-token",
        "host_name": "BUILD01",
        "templates_directory": templates_dir,
        "images_directory": str(tmp_path / "images"),
        "agent_installer": str(installer),
    }


class FakeApi:
    """In-memory CI service that stores raw JSON and records every call."""

    def __init__(self, clouds: list | None = None, lose_on_create: bool = False) -> None:
        self.clouds: list = clouds or []
        self.calls: list = []
        self.posted: list = []
        self.put: list = []
        self.worker_images: list = []
        self._lose_on_create = lose_on_create

    def validate_access(self) -> None:
        self.calls.append(("GET", "/roles"))

    def list_clouds(self):
        from buildcloud.models import BuildCloudSummary

        self.calls.append(("GET", "/build-clouds"))
        return [BuildCloudSummary.model_validate(c) for c in self.clouds]

    def get_cloud(self, build_cloud_id: int):
        from buildcloud.errors import ApiError
        from buildcloud.models import BuildCloud

        self.calls.append(("GET", f"/build-clouds/{build_cloud_id}"))
        for c in self.clouds:
            if c["buildCloudId"] == build_cloud_id:
                return BuildCloud.model_validate(copy.deepcopy(c))
        raise ApiError("GET", f"/build-clouds/{build_cloud_id}", 404)

    def create_cloud(self, cloud) -> None:
        payload = cloud.to_payload()
        self.calls.append(("POST", "/build-clouds"))
        self.posted.append(payload)
        if not self._lose_on_create:
            self.clouds.append(dict(payload, buildCloudId=100 + len(self.clouds)))

    def update_cloud(self, cloud) -> None:
        payload = cloud.to_update_payload()
        self.calls.append(("PUT", "/build-clouds"))
        self.put.append(payload)
        self.clouds = [
            payload if c["buildCloudId"] == payload["buildCloudId"] else c
            for c in self.clouds
        ]

    def set_build_worker_image(self, image_name: str, os_type: str) -> None:
        self.calls.append(("POST", "/build-worker-images"))
        self.worker_images.append((image_name, os_type))

    @property
    def writes(self) -> list:
        return [c for c in self.calls if c[0] in ("POST", "PUT") and c[1] == "/build-clouds"]


@pytest.fixture
def make_api():
    """Factory for FakeApi instances pre-loaded with raw cloud dicts."""
    return FakeApi

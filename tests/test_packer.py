"""Tests for the Packer image builder."""

from __future__ import annotations

import base64
import hashlib
import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from buildcloud.errors import ImageBuildError
from buildcloud.packer import (
    ImageBuilder,
    PackerVariables,
    encode_script,
    iso_checksum_for,
    read_manifest,
)


def _variables(tmp_path: Path, **overrides) -> PackerVariables:
    values = dict(
        install_user="buildcloud",
        install_password="Secret#123",
        disk_size=60000,
        switch_name="bc-switch",
        http_port_min=8000,
        http_port_max=9000,
        output_directory=str(tmp_path / "output"),
        manifest_file=str(tmp_path / "packer-manifest.json"),
        vm_name="bc-1234",
        datemark="20260101000000",
    )
    values.update(overrides)
    return PackerVariables(**values)


def _write_manifest(path: Path, files: list) -> None:
    path.write_text(json.dumps({"builds": [{"name": "hyperv-iso", "files": files}]}))


class TestPackerVariables:
    def test_to_args_pairs(self, tmp_path: Path) -> None:
        args = _variables(tmp_path).to_args()
        pairs = dict(a.split("=", 1) for a in args[1::2])
        assert all(flag == "-var" for flag in args[0::2])
        assert pairs["install_user"] == "buildcloud"
        assert pairs["disk_size"] == "60000"
        assert pairs["switch_name"] == "bc-switch"
        assert pairs["http_port_min"] == "8000"

    def test_unset_values_omitted(self, tmp_path: Path) -> None:
        keys = [a.split("=", 1)[0] for a in _variables(tmp_path).to_args()[1::2]]
        assert "iso_url" not in keys
        assert "custom_script" not in keys

    def test_port_order_validated(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            _variables(tmp_path, http_port_min=9000, http_port_max=8000)

    def test_port_range_validated(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            _variables(tmp_path, http_port_max=70000)

    def test_empty_password_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            _variables(tmp_path, install_password="")

    def test_disk_size_positive(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            _variables(tmp_path, disk_size=0)


class TestReadManifest:
    def test_first_vhd_wins(self, tmp_path: Path) -> None:
        manifest = tmp_path / "m.json"
        _write_manifest(manifest, [
            {"name": "output/Virtual Machines/box.vmcx"},
            {"name": "output/Virtual Hard Disks/box.VHDX"},
            {"name": "output/Virtual Hard Disks/other.vhdx"},
        ])
        assert read_manifest(manifest, tmp_path) == tmp_path / "output/Virtual Hard Disks/box.VHDX"

    def test_absolute_path_kept(self, tmp_path: Path) -> None:
        manifest = tmp_path / "m.json"
        disk = tmp_path / "abs.vhd"
        _write_manifest(manifest, [{"name": str(disk)}])
        assert read_manifest(manifest, Path("/elsewhere")) == disk

    def test_missing_manifest(self, tmp_path: Path) -> None:
        with pytest.raises(ImageBuildError, match="not found"):
            read_manifest(tmp_path / "m.json", tmp_path)

    def test_no_disk(self, tmp_path: Path) -> None:
        manifest = tmp_path / "m.json"
        _write_manifest(manifest, [{"name": "box.vmcx"}])
        with pytest.raises(ImageBuildError, match="No virtual disk"):
            read_manifest(manifest, tmp_path)

    def test_no_builds(self, tmp_path: Path) -> None:
        manifest = tmp_path / "m.json"
        manifest.write_text(json.dumps({"builds": []}))
        with pytest.raises(ImageBuildError):
            read_manifest(manifest, tmp_path)

    def test_garbage(self, tmp_path: Path) -> None:
        manifest = tmp_path / "m.json"
        manifest.write_text("not json")
        with pytest.raises(ImageBuildError):
            read_manifest(manifest, tmp_path)


class TestImageBuilder:
    def test_command_shape(self, tmp_path: Path) -> None:
        template = tmp_path / "t.json"
        cmd = ImageBuilder(builder="hyperv-iso").command(template, _variables(tmp_path))
        assert cmd[:3] == ["packer", "build", "--only=hyperv-iso"]
        assert cmd[-1] == str(template)
        assert "-var" in cmd

    @patch("buildcloud.packer.subprocess.run")
    def test_build_returns_disk(self, mock_run: MagicMock, tmp_path: Path) -> None:
        variables = _variables(tmp_path)

        def fake_packer(cmd, cwd):
            _write_manifest(Path(variables.manifest_file), [{"name": "output/disk.vhdx"}])
            return subprocess.CompletedProcess(cmd, 0)

        mock_run.side_effect = fake_packer
        vhd = ImageBuilder().build_image(tmp_path / "t.json", variables, tmp_path)
        assert vhd == tmp_path / "output/disk.vhdx"
        assert mock_run.call_args[1]["cwd"] == tmp_path

    @patch("buildcloud.packer.subprocess.run")
    def test_build_without_manifest_fails(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.return_value = subprocess.CompletedProcess([], 1)
        with pytest.raises(ImageBuildError):
            ImageBuilder().build_image(tmp_path / "t.json", _variables(tmp_path), tmp_path)
        assert mock_run.call_count == 1

    @patch("buildcloud.packer.subprocess.run", side_effect=FileNotFoundError("packer"))
    def test_packer_missing(self, mock_run: MagicMock, tmp_path: Path) -> None:
        with pytest.raises(ImageBuildError, match="Cannot start"):
            ImageBuilder().build_image(tmp_path / "t.json", _variables(tmp_path), tmp_path)


class TestHelpers:
    def test_encode_script(self, tmp_path: Path) -> None:
        script = tmp_path / "s.ps1"
        script.write_text("Write-Host hi")
        assert base64.b64decode(encode_script(script)) == b"Write-Host hi"
        assert encode_script(None) == ""

    def test_explicit_checksum_wins(self) -> None:
        assert iso_checksum_for("https://x/y.iso", "sha256:abc") == "sha256:abc"

    def test_remote_iso_without_checksum(self) -> None:
        assert iso_checksum_for("https://x/y.iso", None) is None

    def test_local_iso_hashed(self, tmp_path: Path) -> None:
        iso = tmp_path / "media.iso"
        iso.write_bytes(b"iso-bytes")
        expected = "sha256:" + hashlib.sha256(b"iso-bytes").hexdigest()
        assert iso_checksum_for(str(iso), None) == expected

    def test_no_iso(self) -> None:
        assert iso_checksum_for(None, None) is None

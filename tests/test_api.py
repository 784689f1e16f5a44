"""Tests for the CI service REST client.

requests is mocked; no network access is needed.
"""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests

from buildcloud.api import ApiClient
from buildcloud.errors import ApiError, PreconditionError
from buildcloud.models import BuildCloud, Image


def _response(status: int = 200, body: Any = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.content = b"" if body is None else json.dumps(body).encode()
    resp.text = "" if body is None else json.dumps(body)
    resp.json.return_value = body
    return resp


@pytest.fixture()
def client() -> ApiClient:
    return ApiClient("https://ci.example.com/", "tok")


class TestRequest:
    def test_base_url_and_headers(self, client: ApiClient) -> None:
        assert client.base_url == "https://ci.example.com/api"
        assert client.headers["Authorization"] == "Bearer tok"
        assert client.headers["Content-Type"] == "application/json"

    def test_account_scoped_base_url(self) -> None:
        client = ApiClient("https://ci.example.com", "v2.tok", account_name="team")
        assert client.base_url == "https://ci.example.com/api/account/team"

    @patch("buildcloud.api.requests.request")
    def test_non_2xx_raises(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(500, {"message": "boom"})
        with pytest.raises(ApiError) as info:
            client.list_clouds()
        assert info.value.status_code == 500
        assert "boom" in str(info.value)

    @patch("buildcloud.api.requests.request")
    def test_empty_body(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(204)
        client.create_cloud(BuildCloud(name="BUILD01"))


class TestValidateAccess:
    @patch("buildcloud.api.requests.request")
    def test_ok(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(200, [])
        client.validate_access()
        method, url = mock_req.call_args[0]
        assert (method, url) == ("GET", "https://ci.example.com/api/roles")

    @patch("buildcloud.api.requests.request")
    def test_rejected_token(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(401, {"message": "unauthorized"})
        with pytest.raises(PreconditionError, match="rejected"):
            client.validate_access()

    @patch("buildcloud.api.requests.request")
    def test_unreachable(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.side_effect = requests.ConnectionError("refused")
        with pytest.raises(PreconditionError, match="Cannot reach"):
            client.validate_access()


class TestBuildClouds:
    @patch("buildcloud.api.requests.request")
    def test_list(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(200, [
            {"buildCloudId": 1, "name": "BUILD01", "cloudType": "HyperV", "isOnline": True},
        ])
        clouds = client.list_clouds()
        assert clouds[0].name == "BUILD01"
        assert clouds[0].build_cloud_id == 1

    @patch("buildcloud.api.requests.request")
    def test_get(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(200, {
            "buildCloudId": 1, "name": "BUILD01", "cloudType": "HyperV",
            "settings": {"cloudSettings": {"images": {"list": [
                {"name": "Windows", "vhdPath": "a.vhdx", "osType": "Windows", "isDefault": True},
            ]}}},
        })
        cloud = client.get_cloud(1)
        assert mock_req.call_args[0][1].endswith("/api/build-clouds/1")
        assert cloud.images.find("Windows").vhd_path == "a.vhdx"

    @patch("buildcloud.api.requests.request")
    def test_create_posts_full_payload(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(200, {})
        cloud = BuildCloud(name="BUILD01", host_authorization_token="t")
        cloud.images.entries.append(Image(name="Windows", vhd_path="a.vhdx", is_default=True))
        client.create_cloud(cloud)

        method, url = mock_req.call_args[0]
        body = mock_req.call_args[1]["json"]
        assert method == "POST"
        assert url.endswith("/api/build-clouds")
        assert body["settings"]["cloudSettings"]["images"]["list"][0]["name"] == "Windows"
        assert "buildCloudId" not in body

    @patch("buildcloud.api.requests.request")
    def test_update_puts_with_id(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(200, {})
        client.update_cloud(BuildCloud(name="BUILD01", build_cloud_id=9))
        method, url = mock_req.call_args[0]
        assert method == "PUT"
        assert url.endswith("/api/build-clouds")
        assert mock_req.call_args[1]["json"]["buildCloudId"] == 9

    @patch("buildcloud.api.requests.request")
    def test_update_sends_no_client_defaults(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(200, {
            "buildCloudId": 4, "name": "BUILD01", "cloudType": "HyperV",
            "settings": {"cloudSettings": {"images": {"list": []}}},
        })
        cloud = client.get_cloud(4)
        cloud.images.entries.append(Image(name="Windows", vhd_path="a.vhdx"))
        cloud.mark_images_changed()
        client.update_cloud(cloud)

        body = mock_req.call_args[1]["json"]
        assert "workersCapacity" not in body
        assert set(body["settings"]) == {"cloudSettings"}
        assert body["settings"]["cloudSettings"]["images"]["list"][0]["vhdPath"] == "a.vhdx"

    @patch("buildcloud.api.requests.request")
    def test_malformed_cloud_is_api_error(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(200, {"buildCloudId": 4, "cloudType": "HyperV"})
        with pytest.raises(ApiError, match="unexpected response"):
            client.get_cloud(4)

    @patch("buildcloud.api.requests.request")
    def test_malformed_list_is_api_error(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(200, [{"name": "BUILD01"}])
        with pytest.raises(ApiError):
            client.list_clouds()


class TestWorkerImages:
    @patch("buildcloud.api.requests.request")
    def test_registers_new_image(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.side_effect = [_response(200, []), _response(200, {})]
        client.set_build_worker_image("Windows", "Windows")
        assert mock_req.call_count == 2
        method, url = mock_req.call_args[0]
        assert method == "POST"
        assert url.endswith("/api/build-worker-images")
        assert mock_req.call_args[1]["json"] == {"name": "Windows", "osType": "Windows"}

    @patch("buildcloud.api.requests.request")
    def test_existing_image_left_alone(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.return_value = _response(200, [{"name": "Windows", "osType": "Windows"}])
        client.set_build_worker_image("Windows", "Windows")
        assert mock_req.call_count == 1

    @patch("buildcloud.api.requests.request")
    def test_failure_is_fatal(self, mock_req: MagicMock, client: ApiClient) -> None:
        mock_req.side_effect = [_response(200, []), _response(400, {"message": "bad"})]
        with pytest.raises(ApiError):
            client.set_build_worker_image("Linux", "Linux")

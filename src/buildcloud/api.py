"""
REST client for the CI service's build cloud endpoints.

Thin wrapper over requests: one method per endpoint, JSON in and out,
every non-2xx answer raised as ApiError. Updates are whole-resource
replacements, so an update sends back exactly what was read, plus the
changes made since.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from .errors import ApiError, PreconditionError
from .models import BuildCloud, BuildCloudSummary, WorkerImage

logger = logging.getLogger(__name__)


class ApiClient:
    """Authenticated client for one CI service endpoint.

    Args:
        endpoint: Service base URL (e.g. 'https://ci.example.com').
        api_token: Bearer token for the API.
        account_name: Account to scope requests to (needed for v2 tokens).
    """

    def __init__(
        self,
        endpoint: str,
        api_token: str,
        account_name: Optional[str] = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._api_token = api_token
        self._account_name = account_name

    @property
    def base_url(self) -> str:
        if self._account_name:
            return f"{self._endpoint}/api/account/{self._account_name}"
        return f"{self._endpoint}/api"

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make an authenticated API call.

        Args:
            method: HTTP method (GET, POST, PUT).
            path: Path below the API base, starting with '/'.
            data: JSON body.

        Returns:
            Parsed JSON response, or None for an empty body.

        Raises:
            ApiError: If the service answers with a non-2xx status.
        """
        url = f"{self.base_url}{path}"
        logger.debug("%s %s", method, url)

        resp = requests.request(method, url, headers=self.headers, json=data)

        if not 200 <= resp.status_code < 300:
            raise ApiError(method, path, resp.status_code, resp.text)

        if not resp.content:
            return None
        return resp.json()

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def validate_access(self) -> None:
        """Check endpoint and token before any other work.

        Raises:
            PreconditionError: If the endpoint is unreachable or the token is rejected.
        """
        try:
            self._request("GET", "/roles")
        except requests.RequestException as exc:
            raise PreconditionError(
                f"Cannot reach {self._endpoint}: {exc}"
            ) from exc
        except ApiError as exc:
            if exc.status_code in (401, 403):
                raise PreconditionError(
                    f"API token was rejected by {self._endpoint} ({exc.status_code})"
                ) from exc
            raise PreconditionError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Build clouds
    # ------------------------------------------------------------------

    def list_clouds(self) -> List[BuildCloudSummary]:
        data = self._request("GET", "/build-clouds") or []
        try:
            return [BuildCloudSummary.model_validate(item) for item in data]
        except ValidationError as exc:
            raise ApiError("GET", "/build-clouds", body=f"unexpected response: {exc}") from exc

    def get_cloud(self, build_cloud_id: int) -> BuildCloud:
        path = f"/build-clouds/{build_cloud_id}"
        data = self._request("GET", path)
        try:
            return BuildCloud.model_validate(data)
        except ValidationError as exc:
            raise ApiError("GET", path, body=f"unexpected response: {exc}") from exc

    def create_cloud(self, cloud: BuildCloud) -> None:
        logger.info("Creating build cloud %s", cloud.name)
        self._request("POST", "/build-clouds", data=cloud.to_payload())

    def update_cloud(self, cloud: BuildCloud) -> None:
        """Replace the stored cloud with ``cloud`` (id embedded in the body).

        Only fields read from the service or set since are sent.
        """
        logger.info("Updating build cloud %s (id=%s)", cloud.name, cloud.build_cloud_id)
        self._request("PUT", "/build-clouds", data=cloud.to_update_payload())

    # ------------------------------------------------------------------
    # Build worker images
    # ------------------------------------------------------------------

    def list_worker_images(self) -> List[WorkerImage]:
        data = self._request("GET", "/build-worker-images") or []
        return [WorkerImage.model_validate(item) for item in data]

    def set_build_worker_image(self, image_name: str, os_type: str) -> None:
        """Register ``image_name`` as a build worker image unless it already is.

        Args:
            image_name: Image name as listed in the build cloud.
            os_type: 'Windows' or 'Linux'.
        """
        for existing in self.list_worker_images():
            if existing.name == image_name:
                logger.info("Build worker image %s already registered", image_name)
                return
        logger.info("Registering build worker image %s (%s)", image_name, os_type)
        self._request(
            "POST", "/build-worker-images",
            data={"name": image_name, "osType": os_type},
        )

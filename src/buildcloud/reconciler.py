"""
Cloud Reconciler — create or update this host's build cloud.

The service holds at most one build cloud per host, named after the
host. Reconciliation observes one of three states and acts on it:

  Absent                -> create a cloud with the image as sole default
  ExistingIncompatible  -> refuse; the cloud type never changes
  ExistingCompatible    -> merge the image into the full settings and
                           replace the whole resource

The host authorization token is generated once, on create, and reused
on every update so already-registered host agents keep working.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .api import ApiClient
from .credentials import generate_host_token
from .errors import ApiError, CloudTypeConflictError, DuplicateCloudError
from .models import (
    BuildCloud,
    BuildCloudSettings,
    BuildCloudSummary,
    CloudSettings,
    CloudType,
    Image,
    ImageList,
    Networking,
    Provisioning,
    ReconcileOutcome,
    VmConfiguration,
)

logger = logging.getLogger(__name__)


@dataclass
class VmSettings:
    """Host-side settings embedded into a newly created cloud."""

    vm_configuration: VmConfiguration
    networking: Networking
    provisioning: Provisioning


@dataclass
class ReconcileResult:
    """What reconciliation did and the identifiers the host agent needs."""

    cloud_id: int
    host_authorization_token: str
    outcome: ReconcileOutcome
    cloud_name: str


def find_cloud(clouds: List[BuildCloudSummary], name: str) -> Optional[BuildCloudSummary]:
    """Select the cloud named ``name``.

    Raises:
        DuplicateCloudError: If more than one cloud has that name.
    """
    matches = [c for c in clouds if c.name == name]
    if len(matches) > 1:
        raise DuplicateCloudError(name, len(matches))
    return matches[0] if matches else None


def merge_image(images: ImageList, image: Image) -> bool:
    """Merge ``image`` into ``images`` by name.

    An existing entry only gets its disk path replaced; its default flag
    and OS type stay as they are. A new name is appended as non-default.

    Returns:
        True if an existing entry was replaced, False if appended.
    """
    existing = images.find(image.name)
    if existing is not None:
        existing.vhd_path = image.vhd_path
        return True
    images.entries.append(Image(
        name=image.name,
        vhd_path=image.vhd_path,
        os_type=image.os_type,
        is_default=False,
    ))
    return False


class CloudReconciler:
    """Bring the service's build cloud for one host in line with a new image.

    Args:
        api: Client for the CI service.
        expected_type: Cloud type this host must have.
    """

    def __init__(self, api: ApiClient, expected_type: str = CloudType.HYPERV.value) -> None:
        self._api = api
        self._expected_type = expected_type

    def reconcile(
        self,
        host_name: str,
        image: Image,
        vm_settings: VmSettings,
    ) -> ReconcileResult:
        """Create or update the build cloud named ``host_name``.

        Args:
            host_name: Host identifier, used as the cloud name.
            image: Image to add or refresh.
            vm_settings: VM, networking and provisioning settings for a new cloud.

        Returns:
            ReconcileResult with the cloud id and its authorization token.

        Raises:
            DuplicateCloudError: If several clouds share ``host_name``.
            CloudTypeConflictError: If the existing cloud has another type.
            ApiError: On any failed service call.
        """
        summary = find_cloud(self._api.list_clouds(), host_name)

        if summary is None:
            return self._create(host_name, image, vm_settings)

        if summary.cloud_type != self._expected_type:
            logger.error(
                "Cloud %s has type %s, expected %s",
                host_name, summary.cloud_type, self._expected_type,
            )
            raise CloudTypeConflictError(host_name, summary.cloud_type, self._expected_type)

        return self._update(summary, image)

    def _create(self, host_name: str, image: Image, vm_settings: VmSettings) -> ReconcileResult:
        token = generate_host_token()
        cloud = BuildCloud(
            name=host_name,
            cloud_type=self._expected_type,
            host_authorization_token=token,
            settings=BuildCloudSettings(
                cloud_settings=CloudSettings(
                    vm_configuration=vm_settings.vm_configuration,
                    networking=vm_settings.networking,
                    provisioning=vm_settings.provisioning,
                    images=ImageList(entries=[image.model_copy(update={"is_default": True})]),
                ),
            ),
        )
        self._api.create_cloud(cloud)

        created = find_cloud(self._api.list_clouds(), host_name)
        if created is None:
            raise ApiError("GET", "/build-clouds", body=f"cloud '{host_name}' missing after create")

        logger.info("Created build cloud %s (id=%d)", host_name, created.build_cloud_id)
        return ReconcileResult(
            cloud_id=created.build_cloud_id,
            host_authorization_token=token,
            outcome=ReconcileOutcome.CREATED,
            cloud_name=host_name,
        )

    def _update(self, summary: BuildCloudSummary, image: Image) -> ReconcileResult:
        cloud = self._api.get_cloud(summary.build_cloud_id)
        if cloud.build_cloud_id is None:
            cloud.build_cloud_id = summary.build_cloud_id

        replaced = merge_image(cloud.images, image)
        cloud.mark_images_changed()
        logger.info(
            "%s image %s in cloud %s",
            "Replaced" if replaced else "Added", image.name, cloud.name,
        )

        if not cloud.host_authorization_token:
            logger.warning("Cloud %s has no host authorization token; generating one", cloud.name)
            cloud.host_authorization_token = generate_host_token()

        self._api.update_cloud(cloud)
        return ReconcileResult(
            cloud_id=summary.build_cloud_id,
            host_authorization_token=cloud.host_authorization_token,
            outcome=ReconcileOutcome.UPDATED,
            cloud_name=cloud.name,
        )

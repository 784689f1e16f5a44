"""
The provisioning pipeline.

One strictly sequential run:

  validate -> preflight -> API access -> confirm -> credentials
  -> switch/NAT/firewall -> image (build or supplied) -> reconcile cloud
  -> register worker image -> install host agent

Every collaborator lives on the ProvisionContext handed in by the
caller. Steps raise BuildCloudError subclasses and never catch them;
the CLI reports and halts. Nothing already created is rolled back.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console

from . import host_agent
from .answer_files import inject_linux_credentials, inject_windows_credentials
from .api import ApiClient
from .config import ProvisionSettings, check_agent_installer, check_inputs
from .credentials import Credentials, generate_credentials
from .models import (
    CloudType,
    Image,
    Networking,
    OsType,
    Provisioning,
    VmConfiguration,
)
from .network import (
    GATEWAY_IP,
    HOST_IP,
    HTTP_PORT_RANGE,
    START_IP_ADDRESS,
    HyperVHost,
    NetworkProvisioner,
)
from .packer import (
    MANIFEST_NAME,
    ImageBuilder,
    PackerVariables,
    encode_script,
    iso_checksum_for,
)
from .preflight import run_preflight
from .reconciler import CloudReconciler, ReconcileResult, VmSettings

logger = logging.getLogger(__name__)


@dataclass
class ProvisionContext:
    """Settings plus every external collaborator a run talks to."""

    settings: ProvisionSettings
    api: ApiClient
    network: NetworkProvisioner
    builder: ImageBuilder
    reconciler: CloudReconciler
    console: Console = field(default_factory=Console)
    confirm: Optional[Callable[[], None]] = None
    install_agent: Callable[..., Path] = host_agent.install

    @classmethod
    def from_settings(
        cls,
        settings: ProvisionSettings,
        console: Optional[Console] = None,
        confirm: Optional[Callable[[], None]] = None,
    ) -> "ProvisionContext":
        api = ApiClient(settings.endpoint, settings.api_token, settings.account_name)
        return cls(
            settings=settings,
            api=api,
            network=NetworkProvisioner(HyperVHost()),
            builder=ImageBuilder(builder=settings.packer_builder),
            reconciler=CloudReconciler(api, CloudType.HYPERV.value),
            console=console or Console(),
            confirm=confirm,
        )


@dataclass
class ProvisionOutcome:
    """Everything the summary needs to know about a finished run."""

    reconcile: ReconcileResult
    image: Image
    switch_name: str
    firewall_rule: Optional[str] = None
    credentials: Optional[Credentials] = None
    agent_log: Optional[Path] = None


def _step(ctx: ProvisionContext, message: str) -> None:
    ctx.console.print(f"  [bold cyan]>[/] {message}")


def vm_settings_for(settings: ProvisionSettings, switch: str) -> VmSettings:
    return VmSettings(
        vm_configuration=VmConfiguration(
            cpu_cores=settings.cpu_cores,
            ram_mb=settings.ram_mb,
            vm_directory=settings.vm_directory,
        ),
        networking=Networking(
            use_dhcp=False,
            virtual_switch_name=switch,
            dns_servers=settings.dns_servers,
            subnet_mask=settings.subnet_mask,
            start_ip_address=START_IP_ADDRESS,
            default_gateway=GATEWAY_IP,
        ),
        provisioning=Provisioning(preheated_vms=settings.preheated_vms),
    )


def packer_variables_for(
    settings: ProvisionSettings,
    credentials: Credentials,
    switch: str,
    run_dir: Path,
) -> PackerVariables:
    low, high = HTTP_PORT_RANGE
    return PackerVariables(
        install_user=credentials.install_user,
        install_password=credentials.install_password,
        disk_size=settings.disk_size_mb,
        switch_name=switch,
        iso_url=settings.iso_url,
        iso_checksum=iso_checksum_for(settings.iso_url, settings.iso_checksum),
        http_port_min=low,
        http_port_max=high,
        output_directory=str(run_dir / "output"),
        manifest_file=str(run_dir / MANIFEST_NAME),
        vm_name=f"{settings.common_prefix}-{run_dir.name[:8]}",
        cpus=settings.cpu_cores,
        memory=settings.ram_mb,
        image_description=settings.image_description or settings.image_name or "",
        image_features=",".join(settings.image_features),
        custom_script=encode_script(settings.image_custom_script),
        custom_script_after_reboot=encode_script(settings.image_custom_script_after_reboot),
    )


def prepare_answer_file(settings: ProvisionSettings, credentials: Credentials) -> None:
    """Write the install account into the OS answer file, if there is one."""
    path = settings.answer_file_path
    if not path.is_file():
        logger.warning("Answer file %s not found; credentials go to Packer only", path)
        return
    if settings.image_os == OsType.WINDOWS:
        inject_windows_credentials(path, credentials)
    else:
        inject_linux_credentials(path, credentials)


def build_image(
    ctx: ProvisionContext,
    credentials: Credentials,
    switch: str,
) -> Image:
    """Run Packer into a fresh run directory and describe the result."""
    settings = ctx.settings
    run_dir = Path(settings.images_directory) / uuid.uuid4().hex
    run_dir.mkdir(parents=True, exist_ok=True)

    prepare_answer_file(settings, credentials)
    variables = packer_variables_for(settings, credentials, switch, run_dir)
    vhd = ctx.builder.build_image(settings.template_path, variables, run_dir)
    logger.info("Image built: %s", vhd)
    return Image(name=settings.image_name, vhd_path=str(vhd), os_type=settings.image_os)


def run_provisioning(ctx: ProvisionContext) -> ProvisionOutcome:
    """Run every provisioning step in order.

    Returns:
        ProvisionOutcome describing what was created or updated.

    Raises:
        BuildCloudError: From the first step that fails.
    """
    settings = ctx.settings

    _step(ctx, "Checking settings and host tools")
    check_inputs(settings)
    check_agent_installer(settings)
    run_preflight(build_image=settings.builds_image).raise_for_missing()

    _step(ctx, f"Validating API access to {settings.endpoint}")
    ctx.api.validate_access()

    if ctx.confirm is not None:
        ctx.confirm()

    credentials = generate_credentials() if settings.builds_image else None

    _step(ctx, "Preparing host network")
    switch = ctx.network.ensure_switch(settings.common_prefix)
    firewall_rule = None
    if settings.builds_image:
        firewall_rule = ctx.network.ensure_firewall_rule(
            settings.common_prefix, settings.image_os,
            GATEWAY_IP, HOST_IP, HTTP_PORT_RANGE,
        )

    if settings.vhd_path is not None:
        _step(ctx, f"Using existing disk {settings.vhd_path}")
        image = Image(
            name=settings.image_name,
            vhd_path=str(settings.vhd_path),
            os_type=settings.image_os,
        )
    else:
        _step(ctx, f"Building {settings.image_os.value} image with Packer")
        image = build_image(ctx, credentials, switch)

    _step(ctx, f"Registering build cloud {settings.host_name}")
    result = ctx.reconciler.reconcile(
        settings.host_name, image, vm_settings_for(settings, switch),
    )
    ctx.api.set_build_worker_image(image.name, image.os_type.value)

    _step(ctx, "Installing host agent")
    agent_log = ctx.install_agent(
        settings.endpoint,
        result.host_authorization_token,
        installer=settings.agent_installer,
    )

    return ProvisionOutcome(
        reconcile=result,
        image=image,
        switch_name=switch,
        firewall_rule=firewall_rule,
        credentials=credentials,
        agent_log=agent_log,
    )

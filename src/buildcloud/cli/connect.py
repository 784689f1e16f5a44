"""connect command: provision this host as a build cloud."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel

from ..config import load_settings
from ..errors import BuildCloudError
from ..models import OsType
from ..provision import ProvisionContext, run_provisioning
from ..summary import print_summary
from ._common import console, setup_logging

DISCLAIMER = (
    "This will change the configuration of this machine:\n\n"
    "  - create an internal Hyper-V switch and a NAT network\n"
    "  - add an inbound firewall rule (Linux image builds)\n"
    "  - build a VM image with Packer (may take hours)\n"
    "  - install the build host agent service\n\n"
    "Run it on a dedicated build host."
)


def _os_type(ctx, param, value: Optional[str]) -> Optional[OsType]:
    if value is None:
        return None
    for os_type in OsType:
        if os_type.value.lower() == value.lower():
            return os_type
    raise click.BadParameter(f"expected one of: {', '.join(o.value for o in OsType)}")


def _confirm_disclaimer() -> None:
    console.print()
    console.print(Panel(DISCLAIMER, title="[bold yellow]Before you continue[/]", border_style="yellow"))
    click.confirm("  Continue?", default=False, abort=True)


def register_connect_commands(main: click.Group) -> None:
    """Register the connect command."""

    @main.command("connect")
    @click.option("--endpoint", help="CI service URL, e.g. https://ci.example.com.")
    @click.option("--api-token", help="API token of the CI service.")
    @click.option("--account-name", help="Account name (required for v2 tokens).")
    @click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
                  help="YAML file with default settings.")
    @click.option("--host-name", help="Build cloud name. Defaults to this machine's name.")
    @click.option("--cpu-cores", type=int, help="CPU cores per build VM.")
    @click.option("--ram-mb", type=int, help="RAM per build VM in MB.")
    @click.option("--disk-size-mb", type=int, help="Base image disk size in MB.")
    @click.option("--preheated-vms", type=int, help="VMs kept started ahead of jobs.")
    @click.option("--vm-directory", help="Where Hyper-V keeps build VMs.")
    @click.option("--images-directory", help="Where built images are stored.")
    @click.option("--dns-servers", help="DNS servers for build VMs, '; '-separated.")
    @click.option("--subnet-mask", help="Subnet mask of the build network.")
    @click.option("--common-prefix", help="Prefix for switch, NAT and firewall names.")
    @click.option("--image-os", callback=_os_type, help="Windows or Linux.")
    @click.option("--image-name", help="Image name as shown in the build cloud.")
    @click.option("--image-description", help="Free-form image description.")
    @click.option("--image-template", type=click.Path(path_type=Path), help="Packer template.")
    @click.option("--templates-directory", type=click.Path(path_type=Path),
                  help="Directory with the default templates and answer files.")
    @click.option("--image-feature", "image_features", multiple=True,
                  help="Feature to bake into the image (repeatable).")
    @click.option("--custom-script", "image_custom_script", type=click.Path(path_type=Path),
                  help="Script run inside the image during the build.")
    @click.option("--custom-script-after-reboot", "image_custom_script_after_reboot",
                  type=click.Path(path_type=Path), help="Script run after the first reboot.")
    @click.option("--vhd-path", type=click.Path(path_type=Path),
                  help="Use this existing disk instead of building one.")
    @click.option("--iso-url", help="Install media URL or local path.")
    @click.option("--iso-checksum", help="Install media checksum (e.g. sha256:...).")
    @click.option("--answer-file", type=click.Path(path_type=Path),
                  help="autounattend.xml or preseed.cfg to inject credentials into.")
    @click.option("--agent-installer", help="Host agent MSI path or URL.")
    @click.option("--skip-disclaimer", is_flag=True, help="Do not ask for confirmation.")
    @click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
    def connect(config_file: Optional[Path], verbose: bool, **options):
        """Build an image and register this host as a build cloud.

        \b
        Example:
            buildcloud connect --endpoint https://ci.example.com --api-token TOKEN
        """
        setup_logging(verbose)
        started = time.monotonic()
        if not options.get("skip_disclaimer"):
            options.pop("skip_disclaimer", None)

        try:
            settings = load_settings(config_file, options)
            confirm = None if settings.skip_disclaimer else _confirm_disclaimer
            ctx = ProvisionContext.from_settings(settings, console=console, confirm=confirm)
            outcome = run_provisioning(ctx)
        except click.Abort:
            raise
        except BuildCloudError as exc:
            console.print(f"\n  [bold red]Error:[/] {exc}\n")
            raise SystemExit(1)
        except Exception as exc:
            console.print(f"\n  [bold red]Unexpected error:[/] {exc}\n")
            raise SystemExit(1)

        print_summary(console, outcome, time.monotonic() - started)

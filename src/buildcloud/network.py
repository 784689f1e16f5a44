"""
Host networking for build VMs — switch, NAT, and firewall rule.

Build VMs live on an internal Hyper-V switch behind a NAT network with
fixed addressing. Linux image builds additionally need an inbound
firewall rule so the installer inside the VM can fetch its preseed from
Packer's HTTP server on the host.

Every resource is named from the common prefix and is get-or-create:
re-running finds and reuses what an earlier run created. Nothing is
rolled back if a later step fails.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import subprocess
from typing import Any, Optional, Tuple

from .errors import HostCommandError
from .models import OsType

logger = logging.getLogger(__name__)

GATEWAY_IP = "10.118.232.1"
# Host side of the internal switch; Packer's HTTP server listens here.
HOST_IP = GATEWAY_IP
PREFIX_LENGTH = 24
SUBNET_MASK = "255.255.255.0"
START_IP_ADDRESS = "10.118.232.100"
HTTP_PORT_RANGE: Tuple[int, int] = (8000, 9000)


def switch_name(prefix: str) -> str:
    return f"{prefix}-switch"


def nat_name(prefix: str) -> str:
    return f"{prefix}-nat"


def firewall_rule_name(prefix: str) -> str:
    return f"{prefix}-packer-http"


def subnet_of(gateway_ip: str, prefix_length: int = PREFIX_LENGTH) -> str:
    """'10.118.232.1' -> '10.118.232.0/24'."""
    return str(ipaddress.ip_interface(f"{gateway_ip}/{prefix_length}").network)


def _ps_quote(value: str) -> str:
    """Single-quote a value for PowerShell."""
    return "'" + value.replace("'", "''") + "'"


def _lookup(cmdlet: str, **match: str) -> str:
    """List-and-filter query that yields nothing, not an error, when absent.

    A by-name ``Get-*`` for a missing resource sets ``$?`` to false even
    with ``-ErrorAction SilentlyContinue``, and powershell.exe then exits 1.
    """
    condition = " -and ".join(
        f"$_.{prop} -eq {_ps_quote(value)}" for prop, value in match.items()
    )
    return f"@({cmdlet} | Where-Object {{ {condition} }})"


class HyperVHost:
    """Runs PowerShell snippets against the local Hyper-V host.

    Args:
        powershell: PowerShell executable ('powershell' or 'pwsh').
    """

    def __init__(self, powershell: str = "powershell") -> None:
        self._powershell = powershell

    def run(self, script: str) -> str:
        """Run a PowerShell script and return its stdout.

        Raises:
            HostCommandError: If PowerShell exits non-zero.
        """
        cmd = [self._powershell, "-NoProfile", "-NonInteractive", "-Command", script]
        logger.debug("powershell: %s", script)
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise HostCommandError(script, result.returncode, result.stderr)
        return result.stdout

    def query(self, script: str) -> Optional[Any]:
        """Run ``script`` piped through ConvertTo-Json; None when it yields nothing."""
        out = self.run(f"{script} | ConvertTo-Json -Depth 3 -Compress").strip()
        if not out:
            return None
        return json.loads(out)


class NetworkProvisioner:
    """Idempotent creation of the host's build network resources.

    Args:
        host: Hyper-V host command runner.
        gateway_ip: Host address on the internal switch.
        prefix_length: Internal network prefix length.
    """

    def __init__(
        self,
        host: HyperVHost,
        gateway_ip: str = GATEWAY_IP,
        prefix_length: int = PREFIX_LENGTH,
    ) -> None:
        self._host = host
        self._gateway_ip = gateway_ip
        self._prefix_length = prefix_length

    def ensure_switch(self, prefix: str) -> str:
        """Get or create the internal switch, its gateway address and the NAT.

        Returns:
            The switch name.
        """
        name = switch_name(prefix)
        quoted = _ps_quote(name)

        if self._host.query(_lookup("Get-VMSwitch", Name=name)) is None:
            logger.info("Creating internal switch %s", name)
            self._host.run(f"New-VMSwitch -Name {quoted} -SwitchType Internal | Out-Null")
        else:
            logger.info("Using existing switch %s", name)

        alias = f"vEthernet ({name})"
        address = self._host.query(_lookup(
            "Get-NetIPAddress -AddressFamily IPv4",
            InterfaceAlias=alias, IPAddress=self._gateway_ip,
        ))
        if address is None:
            logger.info("Assigning %s/%d to %s", self._gateway_ip, self._prefix_length, name)
            self._host.run(
                f"New-NetIPAddress -IPAddress {_ps_quote(self._gateway_ip)} "
                f"-PrefixLength {self._prefix_length} -InterfaceAlias {_ps_quote(alias)} | Out-Null"
            )

        nat = _ps_quote(nat_name(prefix))
        if self._host.query(_lookup("Get-NetNat", Name=nat_name(prefix))) is None:
            subnet = subnet_of(self._gateway_ip, self._prefix_length)
            logger.info("Creating NAT %s for %s", nat_name(prefix), subnet)
            self._host.run(
                f"New-NetNat -Name {nat} -InternalIPInterfaceAddressPrefix {_ps_quote(subnet)} | Out-Null"
            )

        return name

    def ensure_firewall_rule(
        self,
        prefix: str,
        os_type: OsType,
        gateway_ip: str,
        host_ip: str,
        port_range: Tuple[int, int] = HTTP_PORT_RANGE,
    ) -> Optional[str]:
        """Get or create the inbound rule for Packer's HTTP server.

        Windows builds read their answer file from a floppy and need no rule.

        Args:
            prefix: Common resource prefix.
            os_type: Image OS; only Linux gets a rule.
            gateway_ip: Gateway of the build network; its /24 is the allowed source.
            host_ip: Local address Packer's HTTP server binds to.
            port_range: Inclusive (min, max) TCP ports.

        Returns:
            The rule name, or None when no rule is needed.
        """
        if os_type != OsType.LINUX:
            return None

        name = firewall_rule_name(prefix)
        quoted = _ps_quote(name)
        if self._host.query(_lookup("Get-NetFirewallRule", Name=name)) is not None:
            logger.info("Using existing firewall rule %s", name)
            return name

        low, high = port_range
        logger.info("Creating firewall rule %s for TCP %d-%d", name, low, high)
        self._host.run(
            f"New-NetFirewallRule -Name {quoted} -DisplayName {quoted} "
            "-Direction Inbound -Action Allow -Protocol TCP "
            f"-LocalPort {_ps_quote(f'{low}-{high}')} "
            f"-LocalAddress {_ps_quote(host_ip)} "
            f"-RemoteAddress {_ps_quote(subnet_of(gateway_ip, self._prefix_length))} | Out-Null"
        )
        return name

"""Network backend — DNS servers per network service via ``networksetup``."""

from __future__ import annotations

import ipaddress
import shutil
from typing import Sequence

from sapphire.adapters.base import NetworkBackend
from sapphire.adapters.shell.command import run_command
from sapphire.core.models.receipt import Receipt


def _is_address(text: str) -> bool:
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


class NetworkSetupBackend(NetworkBackend):
    def __init__(self, timeout: float = 30):
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "networksetup"

    def is_available(self) -> bool:
        return shutil.which("networksetup") is not None

    def read_dns_servers(self, service: str) -> list[str]:
        receipt = run_command(
            ["networksetup", "-getdnsservers", service], source=self.name, timeout=self.timeout
        )
        if receipt.failed:
            return []
        # "There aren't any DNS Servers set on Wi-Fi." when empty
        return [line.strip() for line in receipt.output.splitlines() if _is_address(line.strip())]

    def write_dns_servers(self, service: str, servers: Sequence[str]) -> Receipt:
        args = list(servers) or ["Empty"]
        return run_command(
            ["networksetup", "-setdnsservers", service, *args],
            source=self.name,
            timeout=self.timeout,
        )

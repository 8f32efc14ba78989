"""
Firewall helpers — read back ufw state.

``ufw status verbose`` is the only observable the firewall step has,
so its output is parsed into a small status object::

    Status: active
    Default: deny (incoming), allow (outgoing), disabled (routed)
    ...
    To                         Action      From
    --                         ------      ----
    22/tcp                     ALLOW IN    Anywhere
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# ufw's application names for the services the installer opens
SERVICE_PORTS = {"ssh": 22, "http": 80, "https": 443}
REQUIRED_SERVICES = ["ssh", "http", "https"]

_DEFAULT_RE = re.compile(r"^Default:\s*(.+)$", re.MULTILINE)
# Inbound allows only: "ALLOW IN", or a bare "ALLOW" followed by the source column
_RULE_RE = re.compile(
    r"^(\S+)(?:\s+\(v6\))?\s+ALLOW(?:\s+IN)?\s+(?!(?:OUT|FWD)\b)", re.MULTILINE
)


@dataclass
class FirewallStatus:
    active: bool = False
    default_incoming: str = ""
    default_outgoing: str = ""
    allowed_ports: set[int] = field(default_factory=set)

    def satisfies(self, required_ports: list[int]) -> bool:
        """Default-deny inbound, active, and every required port allowed."""
        return (
            self.active
            and self.default_incoming == "deny"
            and all(p in self.allowed_ports for p in required_ports)
        )


def parse_ufw_status(output: str) -> FirewallStatus:
    status = FirewallStatus()
    status.active = bool(re.search(r"^Status:\s*active\b", output, re.MULTILINE))

    m = _DEFAULT_RE.search(output)
    if m:
        for part in m.group(1).split(","):
            part = part.strip()
            pm = re.match(r"(\w+)\s*\((\w+)\)", part)
            if not pm:
                continue
            policy, direction = pm.group(1), pm.group(2)
            if direction == "incoming":
                status.default_incoming = policy
            elif direction == "outgoing":
                status.default_outgoing = policy

    for target in _RULE_RE.findall(output):
        port = _port_of(target)
        if port is not None:
            status.allowed_ports.add(port)
    return status


def _port_of(target: str) -> int | None:
    """``22/tcp`` → 22, ``80`` → 80, ``OpenSSH``/``ssh`` → 22."""
    head = target.split("/", 1)[0]
    if head.isdigit():
        return int(head)
    lowered = head.lower()
    if lowered == "openssh":
        return 22
    return SERVICE_PORTS.get(lowered)


def required_ports() -> list[int]:
    return [SERVICE_PORTS[s] for s in REQUIRED_SERVICES]

"""
DNS gate — make sure a domain points at this host before asking for a
certificate.

Certificate authorities rate-limit failed validations, so the TLS step
is only attempted when one of the domain's A records equals the host's
public IP.  Both lookups are read-only.
"""

from __future__ import annotations

import ipaddress
import logging
import urllib.error
import urllib.request

from lampctl.core.engine.context import StepContext
from lampctl.core.errors import PreconditionFailed

logger = logging.getLogger(__name__)

_USER_AGENT = "lampctl (+dns-check)"


def fetch_public_ip(url: str, timeout: float = 15) -> str:
    """Ask an echo service (``ifconfig.me/ip`` style) for our public IP.

    Raises:
        PreconditionFailed: If the service is unreachable or answers garbage.
    """
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read(256).decode("utf-8", errors="replace").strip()
    except (urllib.error.URLError, TimeoutError, OSError) as e:
        raise PreconditionFailed(f"Cannot determine this server's public IP via {url}: {e}") from e

    try:
        return str(ipaddress.ip_address(body))
    except ValueError:
        raise PreconditionFailed(
            f"Public IP service {url} returned an unexpected answer: {body[:60]!r}"
        ) from None


def parse_dig_short(output: str) -> list[str]:
    """Addresses from ``dig +short`` output; CNAME hops are dropped."""
    addresses = []
    for line in output.splitlines():
        line = line.strip()
        try:
            addresses.append(str(ipaddress.ip_address(line)))
        except ValueError:
            continue
    return addresses


def resolve_a_records(ctx: StepContext, domain: str) -> list[str]:
    result = ctx.check(["dig", "+short", domain, "A"], timeout=30)
    return parse_dig_short(result.stdout)


def check_dns_match(domain: str, server_ip: str, domain_ips: list[str]) -> None:
    """Raise unless the domain resolves to the server.

    Raises:
        PreconditionFailed: With the addresses found, so the operator can
            fix DNS and re-run.
    """
    if server_ip in domain_ips:
        logger.info("DNS OK: %s → %s", domain, server_ip)
        return
    points_to = ", ".join(domain_ips) if domain_ips else "nothing"
    raise PreconditionFailed(
        f"DNS Validation Failed! Domain '{domain}' does not point to this "
        f"server's IP '{server_ip}'. It points to '{points_to}'. "
        "Please update your DNS and wait before re-running."
    )

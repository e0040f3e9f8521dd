"""
SSRF guard for submitted URLs.

Policy: malformed input is an InputError, a destination inside loopback,
private or link-local space is a BlockedTargetError. DNS resolution failures
are fail-open: we can't prove the host is internal, and the browser will fail
on its own if it can't resolve it either.
"""

import asyncio
import ipaddress
import logging
import socket
from urllib.parse import urlparse

from foldy.errors import BlockedTargetError, InputError

logger = logging.getLogger(__name__)

LOOPBACK_HOSTNAMES = {
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
    "0.0.0.0",
}

BLOCKED_NETWORKS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("100.64.0.0/10"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def is_blocked_address(ip_str: str) -> bool:
    try:
        ip = ipaddress.ip_address(ip_str.split("%", 1)[0])
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip.version == net.version and ip in net for net in BLOCKED_NETWORKS)


def parse_target_url(url: str):
    """Syntax check only. Returns the parsed URL."""
    if not isinstance(url, str) or not url.strip():
        raise InputError("url is required", reason="invalid_url")
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https"):
        raise InputError(f"unsupported scheme: {parsed.scheme or '(none)'}", reason="invalid_url")
    if not parsed.hostname:
        raise InputError("missing hostname", reason="invalid_url")
    return parsed


async def _resolve(hostname: str, timeout_s: float) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await asyncio.wait_for(
        loop.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP),
        timeout=timeout_s,
    )
    return [info[4][0] for info in infos]


async def validate_target_url(url: str, dns_timeout_ms: int = 2000) -> str:
    """
    Validate scheme/hostname and reject internal destinations.
    Returns the normalized URL string.
    """
    parsed = parse_target_url(url)
    hostname = parsed.hostname.lower().rstrip(".")

    if hostname in LOOPBACK_HOSTNAMES:
        raise BlockedTargetError(f"blocked hostname: {hostname}")

    try:
        ipaddress.ip_address(hostname)
        literal = True
    except ValueError:
        literal = False

    if literal:
        if is_blocked_address(hostname):
            raise BlockedTargetError(f"blocked address: {hostname}")
        return parsed.geturl()

    try:
        addresses = await _resolve(hostname, dns_timeout_ms / 1000)
    except (socket.gaierror, asyncio.TimeoutError, OSError) as e:
        logger.info("[url-guard] DNS lookup failed for %s (%s), allowing", hostname, type(e).__name__)
        return parsed.geturl()

    for addr in addresses:
        if is_blocked_address(addr):
            raise BlockedTargetError(f"{hostname} resolves to blocked address {addr}")
    return parsed.geturl()

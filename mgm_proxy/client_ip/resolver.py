"""
Best-effort resolution of the original caller's IP address.

Headers set by CDNs and load balancers are consulted in a fixed order, then
the transport peer address. Nothing here verifies that the request really
passed through a trusted hop: the deployment has to strip or overwrite these
headers at the edge, otherwise callers can spoof them.
"""

from typing import Mapping, Optional, Tuple

# Highest precedence first
TRUST_HEADERS: Tuple[str, ...] = (
    "CF-Connecting-IP",  # Cloudflare
    "True-Client-IP",  # Akamai, Cloudflare Enterprise
    "X-Real-IP",  # nginx
    "X-Forwarded-For",  # appended to by every hop
)

FORWARDED_FOR = "x-forwarded-for"


def resolve_client_ip(headers: Mapping[str, str], peer_address: str) -> str:
    """
    Return the best guess of the client IP for a request.

    ``headers`` must be a case-insensitive mapping whose ``get`` returns the
    first occurrence of a header (Starlette and httpx headers both do).
    Empty header values count as absent. For X-Forwarded-For only the first
    comma-separated entry is used, even when it is blank.
    """
    for name in TRUST_HEADERS:
        value = headers.get(name)
        if not value:
            continue
        if name.lower() == FORWARDED_FOR:
            return value.split(",", 1)[0].strip()
        return value.strip()

    return strip_port(peer_address)


def strip_port(peer_address: str) -> str:
    """Drop the port from ``host:port`` or ``[addr]:port``."""
    idx = peer_address.rfind(":")
    if idx == -1:
        return peer_address

    if "[" in peer_address:
        end = peer_address.rfind("]")
        if end == -1:
            return peer_address
        return peer_address[peer_address.index("[") + 1 : end]

    return peer_address[:idx]


def format_peer_address(host: Optional[str], port: Optional[int]) -> str:
    """Render an ASGI client tuple the way it appears on the wire."""
    if not host:
        return ""
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    if port is None:
        return host
    return f"{host}:{port}"

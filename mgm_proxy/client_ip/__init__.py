from .resolver import (
    TRUST_HEADERS,
    format_peer_address,
    resolve_client_ip,
    strip_port,
)

__all__ = [
    "TRUST_HEADERS",
    "format_peer_address",
    "resolve_client_ip",
    "strip_port",
]

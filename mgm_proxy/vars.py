import os
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx

DEFAULT_TARGET_URL = "https://ingestion.mostlygoodmetrics.com"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_PROXY_TIMEOUT = 30.0

# Header the ingestion backend reads the caller address from
CLIENT_IP_HEADER = "X-MGM-Client-IP"
HEALTH_PATH = "/health"
LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")


class ConfigurationError(Exception):
    """Raised when the environment describes a proxy that cannot start."""


@dataclass(frozen=True)
class ProxySettings:
    upstream_url: str = DEFAULT_TARGET_URL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    proxy_timeout: float = DEFAULT_PROXY_TIMEOUT
    log_level: str = "info"
    service_name: str = "mgm-proxy"
    otlp_endpoint: Optional[str] = None
    otlp_headers: str = ""
    metrics_path: str = ""


def _parse_upstream_url(raw: str) -> str:
    try:
        url = httpx.URL(raw)
    except (httpx.InvalidURL, TypeError) as e:
        raise ConfigurationError(f"Invalid MGM_TARGET_URL {raw!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(
            f"Invalid MGM_TARGET_URL {raw!r}: expected an absolute http(s) URL"
        )
    return raw.rstrip("/")


def _parse_port(raw: str) -> int:
    try:
        port = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid PORT {raw!r}: not an integer") from e
    if not 0 < port < 65536:
        raise ConfigurationError(f"Invalid PORT {raw!r}: out of range")
    return port


def _parse_timeout(raw: str) -> float:
    try:
        timeout = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid PROXY_TIMEOUT {raw!r}: not a number") from e
    if not timeout > 0:
        raise ConfigurationError(f"Invalid PROXY_TIMEOUT {raw!r}: must be positive")
    return timeout


def _parse_log_level(raw: str) -> str:
    level = raw.strip().lower()
    if level not in LOG_LEVELS:
        raise ConfigurationError(
            f"Invalid LOG_LEVEL {raw!r}: expected one of {', '.join(LOG_LEVELS)}"
        )
    return level


def _parse_metrics_path(raw: str) -> str:
    path = raw.strip()
    if path and not path.startswith("/"):
        path = "/" + path
    if path == HEALTH_PATH:
        raise ConfigurationError(f"METRICS_PATH cannot be {HEALTH_PATH}")
    return path


def load_settings(environ: Optional[Mapping[str, str]] = None) -> ProxySettings:
    """
    Build the proxy settings from the environment.

    Empty variables count as unset. Raises ConfigurationError on any value
    the proxy cannot run with.
    """
    env = os.environ if environ is None else environ

    def _get(name: str, default: str = "") -> str:
        return env.get(name, "") or default

    return ProxySettings(
        upstream_url=_parse_upstream_url(_get("MGM_TARGET_URL", DEFAULT_TARGET_URL)),
        host=_get("HOST", DEFAULT_HOST),
        port=_parse_port(_get("PORT", str(DEFAULT_PORT))),
        proxy_timeout=_parse_timeout(
            _get("PROXY_TIMEOUT", str(DEFAULT_PROXY_TIMEOUT))
        ),
        log_level=_parse_log_level(_get("LOG_LEVEL", "info")),
        service_name=_get("SERVICE_NAME", "mgm-proxy"),
        otlp_endpoint=_get("OTLP_ENDPOINT") or None,
        otlp_headers=_get("OTLP_HEADERS"),
        metrics_path=_parse_metrics_path(_get("METRICS_PATH")),
    )

"""
envbanner Configuration
========================
Startup configuration for the proxy. Values come from the command line
only; there is no config file and no environment lookup.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass
from typing import Tuple

from envbanner.errors import StartupError

# ── defaults ─────────────────────────────────────────────────────────────────

DEFAULT_UPSTREAM = "http://127.0.0.1:8000"
DEFAULT_LISTEN = "0.0.0.0:8001"
DEFAULT_MESSAGE = "Production"
DEFAULT_COLOR = "red"

SUPPORTED_SCHEMES = ("http", "https")


# ── parsing ──────────────────────────────────────────────────────────────────

def parse_upstream(url: str) -> urllib.parse.SplitResult:
    """Parse and validate the upstream base URL.

    Raises:
        StartupError: if the URL has no http(s) scheme, no host, or a bad port.
    """
    try:
        parts = urllib.parse.urlsplit(url.strip())
        port = parts.port
    except ValueError as e:
        raise StartupError(f"Invalid upstream URL {url!r}: {e}") from e

    if parts.scheme not in SUPPORTED_SCHEMES:
        raise StartupError(
            f"Invalid upstream URL {url!r}: scheme must be one of "
            f"{', '.join(SUPPORTED_SCHEMES)}"
        )
    if not parts.hostname:
        raise StartupError(f"Invalid upstream URL {url!r}: missing host")
    if port == 0:
        raise StartupError(f"Invalid upstream URL {url!r}: port 0")
    if parts.fragment:
        raise StartupError(f"Invalid upstream URL {url!r}: fragments are not allowed")
    return parts


def parse_listen_address(addr: str) -> Tuple[str, int]:
    """Split ``host:port`` into a bindable tuple.

    An empty host (``:8001``) binds every interface. IPv6 hosts use
    brackets: ``[::1]:8001``.
    """
    host, sep, port_str = addr.strip().rpartition(":")
    if not sep:
        raise StartupError(f"Invalid listen address {addr!r}: expected host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_str)
    except ValueError:
        raise StartupError(f"Invalid listen address {addr!r}: bad port {port_str!r}") from None
    if not 0 <= port <= 65535:
        raise StartupError(f"Invalid listen address {addr!r}: port out of range")
    return host, port


# ── config object ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProxyConfig:
    upstream: str = DEFAULT_UPSTREAM
    listen: str = DEFAULT_LISTEN
    message: str = DEFAULT_MESSAGE
    color: str = DEFAULT_COLOR

    @property
    def upstream_url(self) -> urllib.parse.SplitResult:
        return parse_upstream(self.upstream)

    @property
    def listen_address(self) -> Tuple[str, int]:
        return parse_listen_address(self.listen)

    @classmethod
    def build(
        cls,
        upstream: str = DEFAULT_UPSTREAM,
        listen: str = DEFAULT_LISTEN,
        message: str = DEFAULT_MESSAGE,
        color: str = DEFAULT_COLOR,
    ) -> "ProxyConfig":
        """Create a config, validating the upstream URL and listen address."""
        parse_upstream(upstream)
        parse_listen_address(listen)
        return cls(upstream=upstream, listen=listen, message=message, color=color)

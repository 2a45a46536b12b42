"""
envbanner Errors
================
Exception hierarchy shared by the config layer, the interceptor and the
proxy core.
"""

from __future__ import annotations


class ProxyError(Exception):
    """Base class for every error raised by envbanner."""


class StartupError(ProxyError):
    """Fatal configuration or bind failure; nothing has been served yet."""


class MediaTypeError(ProxyError):
    """Upstream sent a ``Content-Type`` header that cannot be parsed."""

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"malformed Content-Type {value!r}: {reason}")


class BodyReadError(ProxyError):
    """Reading the upstream response body failed before clean EOF."""

"""
envbanner Request Rewriter
===========================
Turns a request received from a client into the request sent upstream.

Rules:
  • scheme and authority become the upstream's; paths are joined with a
    single slash and queries with ``&``
  • the upstream sees the client-visible ``Host`` header
  • ``Accept-Encoding`` is dropped so HTML comes back as plain text
  • hop-by-hop headers are dropped (RFC 7230 §6.1)
  • ``X-Forwarded-For/Host/Proto`` are set from the inbound connection
"""

from __future__ import annotations

import http.client
import urllib.parse
from dataclasses import dataclass
from email.message import Message
from typing import Iterable, Tuple

# Connection-scoped headers never forwarded by an intermediary.
HOP_BY_HOP_HEADERS = (
    "Connection",
    "Keep-Alive",
    "Proxy-Connection",
    "Proxy-Authenticate",
    "Proxy-Authorization",
    "TE",
    "Trailer",
    "Transfer-Encoding",
    "Upgrade",
)

FORWARDED_HEADERS = ("X-Forwarded-For", "X-Forwarded-Host", "X-Forwarded-Proto")


# ── Data Models ──────────────────────────────────────────────────────────────

@dataclass
class InboundRequest:
    """A request as it arrived from the client."""
    method: str
    target: str
    headers: Message
    client_ip: str


@dataclass
class OutboundRequest:
    """A request ready to be written to the upstream connection."""
    method: str
    scheme: str
    netloc: str
    target: str
    headers: Message

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.netloc}{self.target}"


# ── Header helpers ───────────────────────────────────────────────────────────

def copy_headers(items: Iterable[Tuple[str, str]]) -> http.client.HTTPMessage:
    """Copy ``(name, value)`` pairs into a fresh header container, keeping duplicates."""
    headers = http.client.HTTPMessage()
    for name, value in items:
        headers[name] = value
    return headers


def strip_hop_by_hop(headers: Message) -> None:
    """Remove hop-by-hop headers in place, including any listed in ``Connection``."""
    for value in headers.get_all("Connection", []):
        for name in value.split(","):
            name = name.strip()
            if name:
                del headers[name]
    for name in HOP_BY_HOP_HEADERS:
        del headers[name]


# ── URL helpers ──────────────────────────────────────────────────────────────

def _join_path(base: str, path: str) -> str:
    base_slash = base.endswith("/")
    path_slash = path.startswith("/")
    if base_slash and path_slash:
        return base + path[1:]
    if not base_slash and not path_slash:
        return base + "/" + path
    return base + path


def _join_query(base: str, query: str) -> str:
    if base and query:
        return f"{base}&{query}"
    return base or query


def _split_target(target: str) -> Tuple[str, str]:
    # Origin-form ("/a?b") is split by hand: urlsplit would read "//x" as a netloc.
    if target.startswith("/"):
        path, _, query = target.partition("?")
        return path, query
    parts = urllib.parse.urlsplit(target)
    return parts.path, parts.query


# ── Rewriter ─────────────────────────────────────────────────────────────────

def rewrite_request(inbound: InboundRequest, upstream: urllib.parse.SplitResult) -> OutboundRequest:
    """Build the upstream-bound request for *inbound*. Never fails."""
    path, query = _split_target(inbound.target)
    target = _join_path(upstream.path, path)
    query = _join_query(upstream.query, query)
    if query:
        target = f"{target}?{query}"

    headers = copy_headers(inbound.headers.items())
    strip_hop_by_hop(headers)
    del headers["Accept-Encoding"]

    authority = upstream.netloc.rpartition("@")[2]
    original_host = inbound.headers.get("Host", "")
    del headers["Host"]
    headers["Host"] = original_host or authority

    # Client-supplied forwarding headers are replaced, not trusted.
    for name in FORWARDED_HEADERS:
        del headers[name]
    headers["X-Forwarded-For"] = inbound.client_ip
    if original_host:
        headers["X-Forwarded-Host"] = original_host
    # TLS is never terminated here
    headers["X-Forwarded-Proto"] = "http"

    return OutboundRequest(
        method=inbound.method,
        scheme=upstream.scheme,
        netloc=authority,
        target=target,
        headers=headers,
    )

"""
envbanner Proxy Core
=====================
Reverse proxy that forwards every request to one upstream and marks HTML
pages with the environment banner on the way back.

Architecture:
  Inbound HTTP is handled by ``http.server`` on a ``ThreadingTCPServer``
  (one thread per connection); outbound requests use ``http.client`` with a
  fresh connection per request. The request rewriter and the response
  interceptor are plain functions plugged into the handler as hooks.

Framing toward the client:
  • passthrough body with a Content-Length  → forwarded as-is
  • rewritten body, or no length known       → chunked (HTTP/1.1 clients)
                                                or close-delimited (HTTP/1.0)
  • HEAD / 1xx / 204 / 304                   → headers only
"""

from __future__ import annotations

import contextlib
import http.client
import itertools
import logging
import socket
import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler
from socketserver import ThreadingTCPServer
from typing import Callable, Iterator, Optional, Tuple

from envbanner.config import ProxyConfig, parse_listen_address, parse_upstream
from envbanner.core.banner import build_banner
from envbanner.core.intercept import (
    ProxyResponse,
    StreamBody,
    has_body,
    modify_response,
)
from envbanner.core.rewrite import (
    InboundRequest,
    OutboundRequest,
    copy_headers,
    rewrite_request,
    strip_hop_by_hop,
)
from envbanner.errors import BodyReadError, MediaTypeError, StartupError

logger = logging.getLogger(__name__)

RequestHook = Callable[[InboundRequest, urllib.parse.SplitResult], OutboundRequest]
ResponseHook = Callable[[ProxyResponse, bytes], ProxyResponse]

REQUEST_CHUNK_SIZE = 64 * 1024


def _chunk(data: bytes) -> bytes:
    return b"%X\r\n%s\r\n" % (len(data), data)


# ── Proxy Handler ────────────────────────────────────────────────────────────

class _ProxyHandler(BaseHTTPRequestHandler):
    """Forwards one client request at a time to the upstream."""

    protocol_version = "HTTP/1.1"
    server_version = "envbanner"

    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")

    def log_error(self, format, *args):
        logger.warning(f"{self.address_string()} - {format % args}")

    def do_GET(self):
        self._proxy_request()

    def do_POST(self):
        self._proxy_request()

    def do_PUT(self):
        self._proxy_request()

    def do_DELETE(self):
        self._proxy_request()

    def do_PATCH(self):
        self._proxy_request()

    def do_HEAD(self):
        self._proxy_request()

    def do_OPTIONS(self):
        self._proxy_request()

    def __getattr__(self, name):
        # Extension methods (PROPFIND, PURGE, ...) are forwarded as well.
        if name.startswith("do_"):
            return self._proxy_request
        raise AttributeError(name)

    # ── request side ─────────────────────────────────────────────────────

    def _request_body(self) -> Tuple[Optional[Iterator[bytes]], bool]:
        """Return ``(chunks, chunked)`` for the client's request body."""
        encoding = self.headers.get("Transfer-Encoding", "").lower()
        if "chunked" in encoding:
            return self._read_chunked(), True
        length = int(self.headers.get("Content-Length") or 0)
        if length > 0:
            return self._read_exact(length), False
        return None, False

    def _read_exact(self, remaining: int) -> Iterator[bytes]:
        while remaining > 0:
            data = self.rfile.read(min(remaining, REQUEST_CHUNK_SIZE))
            if not data:
                raise ConnectionResetError("client closed connection mid-body")
            remaining -= len(data)
            yield data

    def _read_chunked(self) -> Iterator[bytes]:
        while True:
            line = self.rfile.readline(65537)
            size = int(line.split(b";", 1)[0].strip(), 16)
            if size == 0:
                # trailers end with an empty line
                while self.rfile.readline(65537) not in (b"\r\n", b"\n", b""):
                    pass
                return
            yield from self._read_exact(size)
            self.rfile.readline(65537)

    def _send_upstream(
        self,
        outbound: OutboundRequest,
        body: Optional[Iterator[bytes]],
        chunked: bool,
    ) -> Tuple[http.client.HTTPConnection, http.client.HTTPResponse]:
        if outbound.scheme == "https":
            conn: http.client.HTTPConnection = http.client.HTTPSConnection(outbound.netloc)
        else:
            conn = http.client.HTTPConnection(outbound.netloc)

        try:
            conn.putrequest(
                outbound.method,
                outbound.target,
                skip_host=True,
                skip_accept_encoding=True,
            )
            for name, value in outbound.headers.items():
                conn.putheader(name, value)
            if chunked:
                conn.putheader("Transfer-Encoding", "chunked")
            conn.endheaders()

            if body is not None:
                for data in body:
                    conn.send(_chunk(data) if chunked else data)
                if chunked:
                    conn.send(b"0\r\n\r\n")

            return conn, conn.getresponse()
        except BaseException:
            conn.close()
            raise

    # ── forwarding ───────────────────────────────────────────────────────

    def _proxy_request(self):
        proxy: BannerProxy = self.server._banner_proxy  # type: ignore
        inbound = InboundRequest(
            method=self.command,
            target=self.path,
            headers=self.headers,
            client_ip=self.client_address[0],
        )
        outbound = proxy.rewrite(inbound)
        # http.server already answered any "Expect: 100-continue"
        del outbound.headers["Expect"]

        body, chunked = self._request_body()
        try:
            conn, upstream = self._send_upstream(outbound, body, chunked)
        except (OSError, http.client.HTTPException, ValueError) as e:
            logger.error(f"Upstream request {outbound.method} {outbound.url} failed: {e}")
            if body is not None:
                # the rest of the request body is still on the wire
                self.close_connection = True
            self.send_error(502, "Bad Gateway")
            return

        try:
            response = ProxyResponse(
                status=upstream.status,
                reason=upstream.reason,
                headers=copy_headers(upstream.msg.items()),
                body=StreamBody(upstream),
                method=self.command,
            )
            try:
                response = proxy.modify_response(response)
            except MediaTypeError as e:
                logger.error(f"Cannot process response for {outbound.url}: {e}")
                self.send_error(502, "Bad Gateway")
                return
            self._relay(response)
        finally:
            conn.close()

    def _relay(self, response: ProxyResponse) -> None:
        with contextlib.closing(response.body):
            headers = response.headers
            strip_hop_by_hop(headers)

            if not has_body(self.command, response.status):
                self._write_head(response, headers, chunked=False)
                return

            try:
                first = next(response.body, b"")
            except BodyReadError as e:
                logger.error(f"{e}")
                self.send_error(502, "Bad Gateway")
                return

            chunked = False
            if "Content-Length" not in headers:
                if self.request_version >= "HTTP/1.1":
                    chunked = True
                else:
                    self.close_connection = True

            try:
                self._write_head(response, headers, chunked)
                self._write_body(first, response.body, chunked)
            except BodyReadError as e:
                logger.error(f"{e} (response aborted)")
                self.close_connection = True
            except ConnectionError as e:
                logger.debug(f"Client {self.address_string()} went away: {e}")
                self.close_connection = True

    def _write_head(self, response: ProxyResponse, headers, chunked: bool) -> None:
        self.send_response_only(response.status, response.reason)
        for name, value in headers.items():
            self.send_header(name, value)
        if chunked:
            self.send_header("Transfer-Encoding", "chunked")
        self.end_headers()

    def _write_body(self, first: bytes, rest: Iterator[bytes], chunked: bool) -> None:
        for data in itertools.chain((first,), rest):
            if not data:
                continue
            self.wfile.write(_chunk(data) if chunked else data)
        if chunked:
            self.wfile.write(b"0\r\n\r\n")


# ── Proxy Server ─────────────────────────────────────────────────────────────

class _ProxyServer(ThreadingTCPServer):
    """Threaded TCP server with a reference back to the owning proxy."""
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, addr, handler, proxy: "BannerProxy"):
        self._banner_proxy = proxy
        if ":" in addr[0]:
            self.address_family = socket.AF_INET6
        super().__init__(addr, handler)


# ── Banner Proxy ─────────────────────────────────────────────────────────────

class BannerProxy:
    """
    Reverse proxy for a single upstream that brands HTML pages.

    The listen socket is bound on construction so that configuration and
    bind problems surface as :class:`StartupError` before anything is served.
    """

    def __init__(
        self,
        config: ProxyConfig,
        request_hook: RequestHook = rewrite_request,
        response_hook: ResponseHook = modify_response,
    ):
        self.config = config
        self.upstream = parse_upstream(config.upstream)
        self.banner = build_banner(config.message, config.color)
        self._request_hook = request_hook
        self._response_hook = response_hook
        self._thread: Optional[threading.Thread] = None
        self.is_running = False

        listen = parse_listen_address(config.listen)
        try:
            self._server = _ProxyServer(listen, _ProxyHandler, self)
        except OSError as e:
            raise StartupError(f"Cannot listen on {config.listen}: {e}") from e

    @property
    def address(self) -> Tuple[str, int]:
        """The bound ``(host, port)``; useful when listening on port 0."""
        host, port = self._server.server_address[:2]
        return host, port

    # ── Hooks ────────────────────────────────────────────────────────────

    def rewrite(self, inbound: InboundRequest) -> OutboundRequest:
        return self._request_hook(inbound, self.upstream)

    def modify_response(self, response: ProxyResponse) -> ProxyResponse:
        return self._response_hook(response, self.banner)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def serve_forever(self) -> None:
        """Serve in the calling thread until :meth:`stop` or an interrupt."""
        host, port = self.address
        logger.info(f"Proxying {host}:{port} -> {self.config.upstream}")
        self.is_running = True
        try:
            self._server.serve_forever()
        finally:
            self.is_running = False

    def start(self) -> None:
        """Serve on a background daemon thread."""
        if self.is_running:
            return
        self._thread = threading.Thread(
            target=self.serve_forever,
            daemon=True,
            name=f"envbanner-proxy-{self.address[1]}",
        )
        self.is_running = True
        self._thread.start()

    def stop(self) -> None:
        """Stop serving and release the listen socket."""
        if self._thread is not None:
            self._server.shutdown()
            self._thread.join()
            self._thread = None
        self.close()
        logger.info("Proxy stopped")

    def close(self) -> None:
        self._server.server_close()

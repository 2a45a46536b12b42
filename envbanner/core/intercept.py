"""
envbanner Response Interceptor
===============================
Decides, per upstream response, whether the body is HTML that needs the
banner, and if so rewrites it while it streams.

The HTML path is a two-state machine:

  SCANNING  bytes go through an HTML tokenizer; everything tokenized so
            far is passed on untouched. The first ``<body ...>`` start tag
            ends this state.
  COPYING   the tag, the banner and whatever had been read ahead are
            emitted, then the remaining chunks are copied through without
            any further parsing.

Every other response (no ``Content-Type``, a media type other than
``text/html``, an encoded body, or a HEAD/1xx/204/304 answer) keeps its
original body object and is never buffered.
"""

from __future__ import annotations

import http.client
import logging
import re
from dataclasses import dataclass
from email.message import Message
from enum import Enum
from html.parser import HTMLParser
from typing import Any, Dict, Iterator, Optional, Tuple

from envbanner.errors import BodyReadError, MediaTypeError

logger = logging.getLogger(__name__)

BODY_CHUNK_SIZE = 64 * 1024

HTML_MEDIA_TYPE = "text/html"

# Elements whose contents the HTML tokenizer reads as raw text.
RAW_TEXT_ELEMENTS = (
    "iframe",
    "noembed",
    "noframes",
    "noscript",
    "script",
    "style",
    "textarea",
    "title",
    "xmp",
)


# ── Media Types ──────────────────────────────────────────────────────────────

# RFC 7230 tchar
_TCHAR = r"[!#$%&'*+\-.^_`|~0-9A-Za-z]"

_MEDIA_TYPE_RE = re.compile(rf"{_TCHAR}+(?:/{_TCHAR}+)?")

_PARAM_RE = re.compile(
    rf"""\s*;\s*
    (?P<key>{_TCHAR}+)
    \s*=\s*
    (?:
        (?P<token>{_TCHAR}+)
      | "(?P<quoted>(?:[^"\\]|\\.)*)"
    )
    \s*""",
    re.VERBOSE,
)

_QUOTED_PAIR_RE = re.compile(r"\\(.)")


def parse_media_type(value: str) -> Tuple[str, Dict[str, str]]:
    """Parse a ``Content-Type`` value into a lowercase media type and its parameters.

    Strict: anything that is not ``type[/subtype] *(; key=value)`` raises,
    as do duplicate parameter names. A trailing ``;`` is tolerated.

    Raises:
        MediaTypeError: the value cannot be parsed.
    """
    base, _, _ = value.partition(";")
    media_type = base.strip().lower()
    if not media_type:
        raise MediaTypeError(value, "no media type")
    if not _MEDIA_TYPE_RE.fullmatch(media_type):
        raise MediaTypeError(value, "invalid media type")

    params: Dict[str, str] = {}
    rest = value[len(base):]
    pos = 0
    while pos < len(rest):
        if rest[pos:].strip() in ("", ";"):
            break
        match = _PARAM_RE.match(rest, pos)
        if not match:
            raise MediaTypeError(value, "invalid media parameter")
        key = match.group("key").lower()
        if key in params:
            raise MediaTypeError(value, f"duplicate parameter {key!r}")
        token = match.group("token")
        params[key] = token if token is not None else _QUOTED_PAIR_RE.sub(r"\1", match.group("quoted"))
        pos = match.end()

    return media_type, params


# ── Bodies ───────────────────────────────────────────────────────────────────

class StreamBody:
    """Chunk iterator over a readable upstream stream.

    Closing the body closes the stream, whether or not iteration started.
    Read failures other than EOF surface as :class:`BodyReadError`.
    """

    def __init__(self, stream: Any, chunk_size: int = BODY_CHUNK_SIZE):
        self._stream = stream
        self._read = getattr(stream, "read1", None) or stream.read
        self._chunk_size = chunk_size
        self.closed = False

    def __iter__(self) -> "StreamBody":
        return self

    def __next__(self) -> bytes:
        if self.closed:
            raise StopIteration
        try:
            chunk = self._read(self._chunk_size)
        except (OSError, http.client.HTTPException) as e:
            self.close()
            raise BodyReadError(f"Error reading upstream body: {e}") from e
        if not chunk:
            self.close()
            raise StopIteration
        return chunk

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._stream.close()


class _ScanState(str, Enum):
    SCANNING = "scanning"
    COPYING = "copying"


class _StopScan(Exception):
    pass


class _BodyTagScanner(HTMLParser):
    """Incremental tokenizer that stops at the first ``body`` start tag.

    Input is decoded as latin-1 so that character offsets equal byte
    offsets. ``body_end`` is the absolute offset just past the tag.
    ``raw_to_eof`` is set instead when a ``<plaintext>`` element makes the
    rest of the document text.
    """

    def __init__(self):
        super().__init__()
        self.body_end: Optional[int] = None
        self.raw_to_eof = False
        self._fed = 0
        self._offset = 0
        self._tag_start = 0

    @property
    def tokenized(self) -> int:
        """Absolute offset up to which input has been fully tokenized."""
        return self._fed - len(self.rawdata)

    def feed(self, data: bytes) -> None:  # type: ignore[override]
        text = data.decode("latin-1")
        self._offset = self._fed - len(self.rawdata)
        self._fed += len(text)
        try:
            super().feed(text)
        except _StopScan:
            pass

    def parse_starttag(self, i):
        self._tag_start = i
        return super().parse_starttag(i)

    def handle_starttag(self, tag, attrs):
        if tag == "body":
            self.body_end = self._offset + self._tag_start + len(self.get_starttag_text())
            raise _StopScan
        if tag == "plaintext":
            self.raw_to_eof = True
            raise _StopScan
        if tag in RAW_TEXT_ELEMENTS:
            # contents are text up to the matching end tag, never markup
            self.set_cdata_mode(tag)

    def handle_startendtag(self, tag, attrs):
        # <body/> is a self-closing token, not an opening tag
        pass


class BannerBody:
    """Wraps an HTML body and splices *banner* after its opening ``<body>`` tag."""

    def __init__(self, source: StreamBody, banner: bytes):
        self._source = source
        self._banner = banner
        self._chunks = self._transform()
        self.state = _ScanState.SCANNING

    def __iter__(self) -> "BannerBody":
        return self

    def __next__(self) -> bytes:
        return next(self._chunks)

    def close(self) -> None:
        self._chunks.close()
        self._source.close()

    def _transform(self) -> Iterator[bytes]:
        scanner = _BodyTagScanner()
        pending = bytearray()
        emitted = 0

        try:
            for chunk in self._source:
                if self.state is _ScanState.COPYING:
                    yield chunk
                    continue

                pending += chunk
                scanner.feed(chunk)

                if scanner.raw_to_eof:
                    # nothing after <plaintext> can be a tag
                    yield bytes(pending)
                    pending.clear()
                    yield from self._source
                    break

                if scanner.body_end is not None:
                    split = scanner.body_end - emitted
                    logger.debug(f"Injecting banner at byte {scanner.body_end}")
                    self.state = _ScanState.COPYING
                    yield bytes(pending[:split])
                    yield self._banner
                    if split < len(pending):
                        yield bytes(pending[split:])
                    pending.clear()
                    continue

                ready = scanner.tokenized - emitted
                if ready > 0:
                    yield bytes(pending[:ready])
                    del pending[:ready]
                    emitted += ready

            if pending:
                yield bytes(pending)
            if self.state is _ScanState.SCANNING:
                logger.debug("No <body> tag found, page passed through unchanged")
        finally:
            self._source.close()


# ── Responses ────────────────────────────────────────────────────────────────

@dataclass
class ProxyResponse:
    """An upstream response on its way back to the client.

    ``body`` yields bytes and must be closed by whoever consumes it.
    """
    status: int
    reason: str
    headers: Message
    body: Any
    method: str = "GET"
    rewritten: bool = False


def has_body(method: str, status: int) -> bool:
    """Whether a response to *method* with *status* can carry a body."""
    return not (method == "HEAD" or status in (204, 304) or 100 <= status < 200)


def modify_response(response: ProxyResponse, banner: bytes) -> ProxyResponse:
    """Attach the banner to HTML responses; hand everything else back untouched.

    Raises:
        MediaTypeError: the ``Content-Type`` header is malformed. The body
            has been closed by the time this propagates.
    """
    content_type = response.headers.get("Content-Type")
    if not content_type:  # maybe a redirect
        return response

    try:
        media_type, _params = parse_media_type(content_type)
    except MediaTypeError:
        response.body.close()
        raise

    if media_type != HTML_MEDIA_TYPE:
        return response

    if not has_body(response.method, response.status):
        return response

    encoding = response.headers.get("Content-Encoding", "identity").strip().lower()
    if encoding not in ("", "identity"):
        logger.debug(f"HTML body is {encoding}-encoded, passing through without banner")
        return response

    response.body = BannerBody(response.body, banner)
    del response.headers["Content-Length"]
    response.rewritten = True
    return response

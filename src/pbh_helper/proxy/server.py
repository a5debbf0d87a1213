"""Threaded reverse proxy in front of the qBittorrent Web API."""

from __future__ import annotations

import logging
from email.parser import BytesParser
from email.policy import HTTP
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import BinaryIO, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

import requests

from ..config import ProxyConfig
from ..ratelimit import TokenBucket
from .handlers import ALLOW_POST_PATHS, BanHandlers, Form, HandlerResult

LOG = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

PreHandler = Callable[[Form], Optional[HandlerResult]]
PostHandler = Callable[[int, bytes], Optional[bytes]]

_MAX_LINE = 65536


class BodyTooLarge(Exception):
    """Raised while reading a request body that exceeds the configured limit."""


def read_chunked(rfile: BinaryIO, limit: int) -> bytes:
    """Decode a ``Transfer-Encoding: chunked`` body from ``rfile``.

    Raises :class:`BodyTooLarge` once more than ``limit`` bytes of payload
    were announced and :class:`ValueError` on malformed framing.
    """

    body = bytearray()
    while True:
        line = rfile.readline(_MAX_LINE)
        if not line.endswith(b"\n"):
            raise ValueError("truncated chunk size line")
        try:
            size = int(line.split(b";", 1)[0].strip(), 16)
        except ValueError:
            raise ValueError(f"invalid chunk size line {line!r}") from None
        if size < 0:
            raise ValueError(f"invalid chunk size {size}")
        if size == 0:
            break
        if len(body) + size > limit:
            raise BodyTooLarge(f"chunked body exceeds {limit} bytes")
        chunk = rfile.read(size)
        if len(chunk) != size:
            raise ValueError("truncated chunk")
        body += chunk
        if rfile.readline(_MAX_LINE) not in (b"\r\n", b"\n"):
            raise ValueError("missing chunk terminator")

    # trailer section, ignored
    while True:
        line = rfile.readline(_MAX_LINE)
        if line in (b"\r\n", b"\n", b""):
            break
    return bytes(body)


def parse_form(content_type: str, body: bytes) -> Form:
    """Decode an urlencoded or multipart form body into ``{name: [values]}``."""

    if content_type.lower().startswith("multipart/form-data"):
        header = f"Content-Type: {content_type}\r\n\r\n".encode("latin-1")
        message = BytesParser(policy=HTTP).parsebytes(header + body)
        form: Dict[str, List[str]] = {}
        for part in message.iter_parts():
            name = part.get_param("name", header="content-disposition")
            if name is None:
                continue
            payload = part.get_payload(decode=True) or b""
            charset = part.get_content_charset() or "utf-8"
            form.setdefault(name, []).append(payload.decode(charset, errors="replace"))
        return form
    return parse_qs(body.decode("utf-8", errors="replace"), keep_blank_values=True)


class ProxyServer(ThreadingHTTPServer):
    """HTTP server holding the proxy's shared collaborators."""

    daemon_threads = True

    def __init__(
        self,
        server_address: Tuple[str, int],
        config: ProxyConfig,
        handlers: BanHandlers,
        bucket: TokenBucket,
    ) -> None:
        self.config = config
        self.bucket = bucket
        self.pre_handlers: Dict[str, PreHandler] = {
            "POST:/api/v2/app/setPreferences": handlers.set_preferences,
            "POST:/api/v2/transfer/banPeers": handlers.ban_peers,
        }
        self.post_handlers: Dict[str, PostHandler] = {
            "GET:/api/v2/sync/torrentPeers": handlers.sync_torrent_peers,
        }
        super().__init__(server_address, ProxyRequestHandler)


class ProxyRequestHandler(BaseHTTPRequestHandler):
    server: ProxyServer
    protocol_version = "HTTP/1.1"

    def do_GET(self) -> None:
        self._handle("GET")

    def do_POST(self) -> None:
        self._handle("POST")

    def do_PUT(self) -> None:
        self._handle("PUT")

    def do_DELETE(self) -> None:
        self._handle("DELETE")

    def do_PATCH(self) -> None:
        self._handle("PATCH")

    def do_HEAD(self) -> None:
        self._handle("HEAD")

    def do_OPTIONS(self) -> None:
        self._handle("OPTIONS")

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        LOG.debug("%s - %s", self.address_string(), format % args)

    # ------------------------------------------------------------------
    # Request pipeline
    # ------------------------------------------------------------------
    def _handle(self, method: str) -> None:
        parts = urlsplit(self.path)
        path = parts.path
        config = self.server.config

        if method not in ("GET", "POST"):
            LOG.error("%s %s: disabled", method, path)
            self._reject(405)
            return

        chunked = "chunked" in self.headers.get("Transfer-Encoding", "").lower()
        length = 0
        if not chunked:
            try:
                length = int(self.headers.get("Content-Length") or 0)
            except ValueError:
                self._reject(400)
                return

        if method == "POST":
            if path not in ALLOW_POST_PATHS:
                LOG.error("%s %s: disabled", method, path)
                self._reject(403)
                return
            if length > config.max_body_size:
                LOG.warning("%s %s: request body too big", method, path)
                self._reject(413)
                return
            if not self.server.bucket.try_consume():
                LOG.warning("%s %s: rate limit exceeded", method, path)
                self._reject(429)
                return

        if chunked:
            try:
                body = read_chunked(self.rfile, config.max_body_size)
            except BodyTooLarge:
                LOG.warning("%s %s: request body too big", method, path)
                self._reject(413)
                return
            except ValueError as exc:
                LOG.error("%s %s: bad chunked body: %s", method, path, exc)
                self._reject(400)
                return
        else:
            body = self.rfile.read(length) if length > 0 else b""
        route = f"{method}:{path}"

        pre_handler = self.server.pre_handlers.get(route)
        if pre_handler is not None:
            try:
                form = parse_form(self.headers.get("Content-Type", ""), body)
                result = pre_handler(form)
            except Exception:
                LOG.exception("%s %s: handler failed", method, path)
                self._send(500)
                return
            if result is not None:
                self._send(result.status)
                return

        try:
            upstream = self._forward(method, parts.path, parts.query, body)
        except requests.RequestException as exc:
            LOG.error("%s %s: upstream request failed: %s", method, path, exc)
            self._send(502)
            return

        content = upstream.content
        status = upstream.status_code
        post_handler = self.server.post_handlers.get(route)
        if post_handler is not None:
            try:
                rewritten = post_handler(status, content)
            except Exception:
                LOG.exception("%s %s: response handler failed", method, path)
                self._send(500)
                return
            if rewritten is not None:
                content, status = rewritten, 200

        # requests folds repeated headers into one value; urllib3 keeps each
        # Set-Cookie line separate
        headers = self._response_headers(upstream.raw.headers.iteritems())
        self._send(status, headers, content)

    def _forward(self, method: str, path: str, query: str, body: bytes) -> requests.Response:
        config = self.server.config
        origin = config.qbt_endpoint
        headers = {
            key: value
            for key, value in self.headers.items()
            if key.lower() not in HOP_BY_HOP_HEADERS
            and key.lower() not in ("host", "content-length", "accept-encoding")
        }
        headers["Host"] = urlsplit(origin).netloc
        headers["Origin"] = origin
        headers["Referer"] = origin
        headers["Accept-Encoding"] = "identity"

        url = f"{origin}{path}" + (f"?{query}" if query else "")
        LOG.debug("forwarding %s %s", method, url)
        # no shared Session: its cookie jar would leak logins between clients
        return requests.request(
            method,
            url,
            data=body or None,
            headers=headers,
            allow_redirects=False,
            timeout=config.upstream_timeout,
        )

    @staticmethod
    def _response_headers(items: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
        return [
            (key, value)
            for key, value in items
            if key.lower() not in HOP_BY_HOP_HEADERS
            # send_response() already emits Server and Date
            and key.lower() not in ("content-length", "content-encoding", "server", "date")
        ]

    def _reject(self, status: int) -> None:
        # the request body is left unread; do not reuse the connection
        self.close_connection = True
        self._send(status, [("Connection", "close")])

    def _send(
        self,
        status: int,
        headers: Iterable[Tuple[str, str]] = (),
        body: bytes = b"",
    ) -> None:
        self.send_response(status)
        for key, value in headers:
            self.send_header(key, value)
        if status not in (204, 304):
            self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body and status not in (204, 304):
            self.wfile.write(body)

"""HTTP sink that POSTs NDJSON records in fixed-size batches.

The sink is transport-agnostic: it encodes no vendor-specific schema and
supports no authentication, bearer tokens, or HMAC-SHA256 body signatures.
"""

from __future__ import annotations

import dataclasses
import gzip
import hashlib
import hmac
import http.client
import ipaddress
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field

from bumblebee.output import SinkStats

__all__ = ["HTTPSinkError", "HTTPAuth", "HTTPConfig", "HTTPSink"]

DEFAULT_BATCH_SIZE = 500
DEFAULT_TIMEOUT = 30.0
DEFAULT_HMAC_HEADER = "X-Inventory-Signature"
CONTENT_TYPE_NDJSON = "application/x-ndjson"
_MAX_RESPONSE_SNIPPET = 512


class HTTPSinkError(Exception):
    """Raised for invalid sink configuration and failed deliveries."""


@dataclass
class HTTPAuth:
    """How each request is authenticated.

    ``mode`` is "none", "bearer" or "hmac-sha256". With a
    ``timestamp_header`` the HMAC covers "<unix-seconds>.<body>".
    """

    mode: str = ""
    token: str = ""
    hmac_key: bytes = b""
    hmac_header: str = ""
    timestamp_header: str = ""


@dataclass
class HTTPConfig:
    """Sink configuration; ``timeout`` is in seconds.

    Plain http is only allowed to loopback hosts unless ``allow_insecure``.
    With ``gzip`` the body is compressed and any HMAC covers the
    compressed bytes.
    """

    url: str = ""
    auth: HTTPAuth = field(default_factory=HTTPAuth)
    timeout: float = 0.0
    batch_size: int = 0
    user_agent: str = ""
    allow_insecure: bool = False
    gzip: bool = False
    opener: urllib.request.OpenerDirector | None = None


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def _validated(cfg: HTTPConfig) -> HTTPConfig:
    if not cfg.url:
        raise HTTPSinkError("http sink: url is required")
    try:
        parts = urllib.parse.urlsplit(cfg.url)
        host = parts.hostname or ""
    except ValueError as exc:
        raise HTTPSinkError(f"http sink: invalid url: {exc}") from exc
    if parts.scheme not in ("https", "http"):
        raise HTTPSinkError(
            f"http sink: url scheme must be http or https, got {parts.scheme!r}"
        )
    if parts.scheme == "http" and not cfg.allow_insecure and not _is_loopback_host(host):
        raise HTTPSinkError(
            "http sink: refusing plain http to non-loopback host; "
            "use https or set allow-insecure for testing"
        )
    auth = dataclasses.replace(cfg.auth)
    if auth.mode in ("", "none"):
        auth.mode = "none"
    elif auth.mode == "bearer":
        if not auth.token:
            raise HTTPSinkError("http sink: bearer auth requires a token")
    elif auth.mode == "hmac-sha256":
        if not auth.hmac_key:
            raise HTTPSinkError("http sink: hmac-sha256 auth requires a key")
        if not auth.hmac_header:
            auth.hmac_header = DEFAULT_HMAC_HEADER
    else:
        raise HTTPSinkError(f"http sink: unknown auth mode {auth.mode!r}")
    return dataclasses.replace(
        cfg,
        auth=auth,
        batch_size=cfg.batch_size if cfg.batch_size > 0 else DEFAULT_BATCH_SIZE,
        timeout=cfg.timeout if cfg.timeout > 0 else DEFAULT_TIMEOUT,
    )


def _apply_auth(req: urllib.request.Request, auth: HTTPAuth, body: bytes) -> None:
    if auth.mode == "none":
        return
    if auth.mode == "bearer":
        req.add_header("Authorization", "Bearer " + auth.token)
        return
    if auth.mode == "hmac-sha256":
        payload = body
        if auth.timestamp_header:
            ts = str(int(time.time()))
            req.add_header(auth.timestamp_header, ts)
            payload = ts.encode("ascii") + b"." + body
        sig = hmac.new(auth.hmac_key, payload, hashlib.sha256).hexdigest()
        req.add_header(auth.hmac_header or DEFAULT_HMAC_HEADER, "sha256=" + sig)
        return
    raise HTTPSinkError(f"http sink: unknown auth mode {auth.mode!r}")


class HTTPSink:
    """Buffers NDJSON lines and POSTs them once ``batch_size`` is reached.

    Each write should be one or more complete lines. :meth:`close` flushes
    what remains. A failed delivery is remembered and raised again by
    every later write and by close.
    """

    def __init__(self, config: HTTPConfig) -> None:
        self._cfg = _validated(config)
        self._opener = self._cfg.opener or urllib.request.build_opener()
        self._lock = threading.Lock()
        self._buf = bytearray()
        self._in_batch = 0
        self._err: HTTPSinkError | None = None
        self._closed = False
        self._stats = SinkStats()

    def write(self, data: bytes | str) -> int:
        """Buffer data, flushing a batch when full; returns bytes accepted."""
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        with self._lock:
            if self._closed:
                raise HTTPSinkError("http sink: write after close")
            if self._err is not None:
                raise self._err
            self._buf += payload
            self._in_batch += payload.count(b"\n")
            if self._in_batch >= self._cfg.batch_size:
                try:
                    self._flush_locked()
                except HTTPSinkError as exc:
                    self._err = exc
                    raise
            return len(payload)

    def close(self) -> None:
        """Flush any buffered lines; later calls do nothing."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._err is not None:
                raise self._err
            if not self._buf:
                return
            self._flush_locked()

    def stats(self) -> SinkStats:
        """Delivery counters for batches attempted so far."""
        with self._lock:
            return dataclasses.replace(self._stats)

    def __enter__(self) -> HTTPSink:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _flush_locked(self) -> None:
        body = bytes(self._buf)
        self._buf.clear()
        self._in_batch = 0

        wire = gzip.compress(body, mtime=0) if self._cfg.gzip else body
        req = urllib.request.Request(self._cfg.url, data=wire, method="POST")
        req.add_header("Content-Type", CONTENT_TYPE_NDJSON)
        if self._cfg.gzip:
            req.add_header("Content-Encoding", "gzip")
        if self._cfg.user_agent:
            req.add_header("User-Agent", self._cfg.user_agent)
        _apply_auth(req, self._cfg.auth, wire)

        self._stats.http_batches_attempted += 1
        try:
            with self._opener.open(req, timeout=self._cfg.timeout) as resp:
                status = resp.status
                self._stats.http_last_status = status
                if not 200 <= status < 300:
                    snippet = resp.read(_MAX_RESPONSE_SNIPPET)
                    self._fail_status(status, snippet)
                resp.read()
        except urllib.error.HTTPError as exc:
            self._stats.http_last_status = exc.code
            try:
                snippet = exc.read(_MAX_RESPONSE_SNIPPET)
            except OSError:
                snippet = b""
            finally:
                exc.close()
            self._fail_status(exc.code, snippet)
        except (OSError, http.client.HTTPException) as exc:
            self._stats.http_batches_failed += 1
            self._stats.http_last_status = 0
            raise HTTPSinkError(f"http sink: post: {exc}") from exc
        self._stats.http_batches_succeeded += 1

    def _fail_status(self, status: int, snippet: bytes) -> None:
        self._stats.http_batches_failed += 1
        text = snippet.decode("utf-8", errors="replace").strip()
        raise HTTPSinkError(f"http sink: server returned {status}: {text}")
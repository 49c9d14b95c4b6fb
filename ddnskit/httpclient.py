"""HTTP clients restricted to one IP family, and the shared detection request logic."""

from __future__ import annotations

import http.client
import json
import socket
import threading
import time
from collections.abc import Callable, Mapping
from itertools import count
from urllib.parse import urljoin, urlsplit

from ddnskit.family import IPAddress, IPFamily
from ddnskit.pp import Emoji, PrettyPrinter

MAX_READ_LENGTH = 102400
"""The maximum number of bytes read from an HTTP response."""

_DEFAULT_TIMEOUT = 30.0
_MAX_REDIRECTS = 10
_RETRY_MAX = 4
_RETRY_WAIT_MIN = 1.0
_RETRY_WAIT_MAX = 30.0
_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
_SOCKET_FAMILY = {IPFamily.IP4: socket.AF_INET, IPFamily.IP6: socket.AF_INET6}


class _ReadError(OSError):
    """The response body could not be read."""


def _dial(host: str, port: int, family: IPFamily, timeout: float) -> socket.socket:
    last: OSError | None = None
    for af, kind, proto, _, address in socket.getaddrinfo(host, port, _SOCKET_FAMILY[family], socket.SOCK_STREAM):
        sock = socket.socket(af, kind, proto)
        try:
            sock.settimeout(timeout)
            sock.connect(address)
            return sock
        except OSError as err:
            sock.close()
            last = err
    raise last or OSError(f"no {family.describe()} address found for {host}")


class _HTTPConnection(http.client.HTTPConnection):
    def __init__(self, host: str, port: int, family: IPFamily, timeout: float) -> None:
        super().__init__(host, port, timeout=timeout)
        self._family = family

    def connect(self) -> None:
        self.sock = _dial(self.host, self.port, self._family, self.timeout)


class _HTTPSConnection(http.client.HTTPSConnection):
    def __init__(self, host: str, port: int, family: IPFamily, timeout: float) -> None:
        super().__init__(host, port, timeout=timeout)
        self._family = family

    def connect(self) -> None:
        sock = _dial(self.host, self.port, self._family, self.timeout)
        self.sock = self._context.wrap_socket(sock, server_hostname=self.host)


class FamilyClient:
    """An HTTP client that only connects over one IP family, keeping idle connections."""

    def __init__(self, family: IPFamily) -> None:
        self.family = family
        self._idle: dict[tuple[str, str, int], list[http.client.HTTPConnection]] = {}
        self._lock = threading.Lock()

    def _take(self, key: tuple[str, str, int]) -> http.client.HTTPConnection | None:
        with self._lock:
            conns = self._idle.get(key)
            return conns.pop() if conns else None

    def _put(self, key: tuple[str, str, int], conn: http.client.HTTPConnection) -> None:
        with self._lock:
            self._idle.setdefault(key, []).append(conn)

    def _new(self, scheme: str, host: str, port: int, timeout: float) -> http.client.HTTPConnection:
        cls = _HTTPSConnection if scheme == "https" else _HTTPConnection
        return cls(host, port, self.family, timeout)

    def _round_trip(
        self, method: str, url: str, headers: Mapping[str, str], body: bytes | None, timeout: float
    ) -> tuple[int, http.client.HTTPMessage, bytes]:
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https"):
            raise ValueError(f"unsupported protocol scheme {parts.scheme!r}")
        host = parts.hostname
        if not host:
            raise ValueError("no Host in request URL")
        port = parts.port or (443 if parts.scheme == "https" else 80)
        key = (parts.scheme, host, port)
        target = (parts.path or "/") + (f"?{parts.query}" if parts.query else "")

        conn = self._take(key)
        reused = conn is not None
        while True:
            if conn is None:
                conn = self._new(parts.scheme, host, port, timeout)
            try:
                conn.request(method, target, body=body, headers=dict(headers))
                response = conn.getresponse()
                break
            except (OSError, http.client.HTTPException):
                conn.close()
                if not reused:
                    raise
                conn, reused = None, False

        try:
            data = response.read(MAX_READ_LENGTH)
        except (OSError, http.client.HTTPException) as err:
            conn.close()
            raise _ReadError(str(err) or type(err).__name__) from err
        if response.isclosed() and not response.will_close:
            self._put(key, conn)
        else:
            conn.close()
        return response.status, response.headers, data

    def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> tuple[int, bytes]:
        """Send a request, following redirects; return the status and the (limited) body."""
        current = url
        for _ in range(_MAX_REDIRECTS + 1):
            status, resp_headers, data = self._round_trip(method, current, headers or {}, body, timeout)
            location = resp_headers.get("Location")
            if status in _REDIRECT_STATUSES and location:
                current = urljoin(current, location)
                if status == 303 or (status in (301, 302) and method == "POST"):
                    method, body = "GET", None
                continue
            return status, data
        raise ValueError(f"stopped after {_MAX_REDIRECTS} redirects")

    def close_idle_connections(self) -> None:
        """Close every idle kept-alive connection."""
        with self._lock:
            pools = list(self._idle.values())
            self._idle.clear()
        for conns in pools:
            for conn in conns:
                conn.close()


_SHARED = {family: FamilyClient(family) for family in IPFamily}


def shared_client(family: IPFamily) -> FamilyClient:
    """The shared client allowing only traffic of the given family."""
    return _SHARED[family]


def close_idle_connections() -> None:
    """Close idle connections of all shared clients."""
    for client in _SHARED.values():
        client.close_idle_connections()


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _check_url(url: str) -> None:
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in url):
        raise ValueError("invalid control character in URL")
    _ = urlsplit(url).port


def _retryable(status: int) -> bool:
    return status == 0 or status == 429 or (status >= 500 and status != 501)


def _send_with_retries(
    client: FamilyClient, method: str, url: str, headers: Mapping[str, str] | None, body: bytes | None
) -> tuple[int, bytes]:
    for attempt in count():
        try:
            status, data = client.request(method, url, headers, body)
        except _ReadError:
            raise
        except (OSError, http.client.HTTPException) as err:
            reason = str(err) or type(err).__name__
        else:
            if not _retryable(status):
                return status, data
            reason = f"unexpected HTTP status {status}"
        if attempt >= _RETRY_MAX:
            raise OSError(f"giving up after {attempt + 1} attempt(s): {reason}")
        time.sleep(min(_RETRY_WAIT_MIN * 2**attempt, _RETRY_WAIT_MAX))
    raise OSError("unreachable")


def fetch_ip(
    ppfmt: PrettyPrinter,
    family: IPFamily,
    url: str,
    extract: Callable[[PrettyPrinter, bytes], IPAddress | None],
    method: str = "GET",
    headers: Mapping[str, str] | None = None,
    body: bytes | None = None,
) -> IPAddress | None:
    """Request a URL over the family's shared client and extract an address from the body."""
    quoted = _quote(url)
    try:
        _check_url(url)
    except ValueError as err:
        ppfmt.notice(Emoji.IMPOSSIBLE, f"Failed to prepare HTTP(S) request to {quoted}: {err}")
        return None

    try:
        _, data = _send_with_retries(shared_client(family), method, url, headers, body)
    except _ReadError as err:
        ppfmt.notice(Emoji.ERROR, f"Failed to read HTTP(S) response from {quoted}: {err}")
        return None
    except (OSError, http.client.HTTPException, ValueError) as err:
        ppfmt.notice(Emoji.ERROR, f"Failed to send HTTP(S) request to {quoted}: {err}")
        return None

    return extract(ppfmt, data)
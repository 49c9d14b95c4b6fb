"""Dead man's switches that alert the user when detection or updating fails."""

from __future__ import annotations

import base64
import http.client
import json
import posixpath
import ssl
import string
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from itertools import count
from urllib.parse import SplitResult, unquote, unquote_plus, urlencode, urlsplit, urlunsplit

from ddnskit.pp import Emoji, PrettyPrinter

MAX_READ_LENGTH = 102400
"""The maximum number of bytes read from an HTTP response."""

HEALTHCHECKS_DEFAULT_TIMEOUT = 10.0
UPTIME_KUMA_DEFAULT_TIMEOUT = 10.0

_RETRY_MAX = 4
_RETRY_WAIT_MIN = 1.0
_RETRY_WAIT_MAX = 30.0
_HEX_DIGITS = frozenset(string.hexdigits)


@dataclass(frozen=True)
class Message:
    """Lines of a monitor message together with a success flag."""

    ok: bool = True
    lines: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines))

    def format(self) -> str:
        """Turn the message into a single string."""
        return "\n".join(self.lines)

    def is_empty(self) -> bool:
        """Whether the message has no lines."""
        return not self.lines


def merge_messages(*messages: Message) -> Message:
    """Merge messages, keeping only the lines of the highest severity."""
    ok = all(message.ok for message in messages)
    lines = tuple(line for message in messages if message.ok == ok for line in message.lines)
    return Message(ok, lines)


class BasicMonitor(ABC):
    """A dead man's switch: the user is alerted when pings stop or report failure."""

    @abstractmethod
    def describe(self) -> Iterator[tuple[str, str]]:
        """Yield (service name, parameters) pairs."""

    @abstractmethod
    def ping(self, ppfmt: PrettyPrinter, message: Message) -> bool:
        """Ping with success (silences alerts) or failure (alerts immediately)."""


class Monitor(BasicMonitor):
    """A monitor with start, exit and log signals."""

    @abstractmethod
    def start(self, ppfmt: PrettyPrinter, message: str) -> bool:
        """Send the start signal."""

    @abstractmethod
    def exit(self, ppfmt: PrettyPrinter, message: str) -> bool:
        """Send the successful-exit signal."""

    @abstractmethod
    def log(self, ppfmt: PrettyPrinter, message: Message) -> bool:
        """Log extra information, or alert immediately on failure."""


class Composed(Monitor):
    """The composite of several monitors."""

    def __init__(self, *monitors: BasicMonitor | None) -> None:
        flat: list[BasicMonitor] = []
        for monitor in monitors:
            if monitor is None:
                continue
            if isinstance(monitor, Composed):
                flat.extend(monitor.monitors)
            else:
                flat.append(monitor)
        self.monitors: tuple[BasicMonitor, ...] = tuple(flat)

    def __len__(self) -> int:
        return len(self.monitors)

    def __iter__(self) -> Iterator[BasicMonitor]:
        return iter(self.monitors)

    def describe(self) -> Iterator[tuple[str, str]]:
        """Yield the descriptions of every monitor in order."""
        for monitor in self.monitors:
            yield from monitor.describe()

    def ping(self, ppfmt: PrettyPrinter, message: Message) -> bool:
        """Ping each monitor, stopping at the first failure."""
        return all(monitor.ping(ppfmt, message) for monitor in self.monitors)

    def start(self, ppfmt: PrettyPrinter, message: str) -> bool:
        """Send the start signal to each monitor that supports it."""
        return all(
            monitor.start(ppfmt, message)
            for monitor in self.monitors
            if isinstance(monitor, Monitor)
        )

    def exit(self, ppfmt: PrettyPrinter, message: str) -> bool:
        """Send the exit signal to each monitor that supports it."""
        return all(
            monitor.exit(ppfmt, message)
            for monitor in self.monitors
            if isinstance(monitor, Monitor)
        )

    def log(self, ppfmt: PrettyPrinter, message: Message) -> bool:
        """Log to each monitor; basic monitors are pinged only on failure."""
        for monitor in self.monitors:
            if isinstance(monitor, Monitor):
                if not monitor.log(ppfmt, message):
                    return False
            elif not message.ok and not monitor.ping(ppfmt, message):
                return False
        return True


class _RequestError(Exception):
    """The request could not be completed."""


class _ReadError(Exception):
    """The response body could not be read."""


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _check_escapes(text: str) -> None:
    pos = text.find("%")
    while pos != -1:
        if len(text) < pos + 3 or not set(text[pos + 1 : pos + 3]) <= _HEX_DIGITS:
            raise ValueError(f"invalid URL escape {text[pos : pos + 3]!r}")
        pos = text.find("%", pos + 3)


def _parse_url(raw: str) -> SplitResult:
    """Parse a URL, rejecting what a strict URL parser would reject."""
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in raw):
        raise ValueError("invalid control character in URL")
    for ch in raw:
        if ch.isalpha() or ch in "0123456789+-.":
            continue
        if ch == ":" and raw.startswith(":"):
            raise ValueError("missing protocol scheme")
        break
    _check_escapes(raw.partition("#")[0])
    parts = urlsplit(raw)
    _ = parts.port  # raises ValueError for an invalid port
    return parts


def _host(parts: SplitResult) -> str:
    return parts.netloc.rpartition("@")[2]


def _parse_query(raw: str) -> dict[str, list[str]]:
    """Parse a query string, rejecting semicolons and bad escapes."""
    result: dict[str, list[str]] = {}
    for chunk in raw.split("&"):
        if not chunk:
            continue
        if ";" in chunk:
            raise ValueError("invalid semicolon separator in query")
        key, _, value = chunk.partition("=")
        _check_escapes(key)
        _check_escapes(value)
        result.setdefault(unquote_plus(key), []).append(unquote_plus(value))
    return result


def _join_path(base: str, endpoint: str) -> str:
    relative = not base.startswith("/")
    first = "/" + base if relative else base
    joined = "/".join(element for element in (first, endpoint) if element)
    path = posixpath.normpath(joined)
    if path.startswith("//"):
        path = "/" + path.lstrip("/")
    if relative:
        path = path[1:]
    if endpoint.endswith("/") and not path.endswith("/"):
        path += "/"
    return path


def _prepare(parts: SplitResult, method: str, body: bytes | None) -> urllib.request.Request:
    url = urlunsplit((parts.scheme, _host(parts), parts.path or "/", parts.query, ""))
    headers: dict[str, str] = {}
    if "@" in parts.netloc:
        user = unquote(parts.username or "")
        secret = unquote(parts.password or "")
        credentials = base64.b64encode(f"{user}:{secret}".encode()).decode("ascii")
        headers["Authorization"] = f"Basic {credentials}"
    return urllib.request.Request(url, data=body, method=method, headers=headers)


def _retryable_status(status: int) -> bool:
    return status == 0 or status == 429 or (status >= 500 and status != 501)


def _backoff(wait_min: float, attempt: int, retry_after: str | None) -> float:
    if retry_after is not None and retry_after.strip().isdigit():
        return float(int(retry_after.strip()))
    return min(wait_min * 2**attempt, _RETRY_WAIT_MAX)


def _send(request: urllib.request.Request, timeout: float, retry_wait: float) -> tuple[int, bytes]:
    """Send a request with retries; return the status and the (limited) body."""
    deadline = time.monotonic() + timeout
    for attempt in count():
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise _RequestError("context deadline exceeded")
        retry_after: str | None = None
        response = None
        reason = ""
        try:
            response = urllib.request.urlopen(request, timeout=remaining)
        except urllib.error.HTTPError as err:
            response = err
        except ssl.SSLCertVerificationError as err:
            raise _RequestError(str(err)) from err
        except (OSError, http.client.HTTPException) as err:
            reason = str(err) or type(err).__name__

        if response is not None:
            with response:
                status = response.getcode() or 0
                if not _retryable_status(status):
                    try:
                        return status, response.read(MAX_READ_LENGTH)
                    except (OSError, http.client.HTTPException) as err:
                        raise _ReadError(str(err) or type(err).__name__) from err
                reason = f"unexpected HTTP status {status}"
                if status in (429, 503):
                    retry_after = response.headers.get("Retry-After")

        if attempt >= _RETRY_MAX:
            raise _RequestError(f"giving up after {attempt + 1} attempt(s): {reason}")
        wait = _backoff(retry_wait, attempt, retry_after)
        if time.monotonic() + wait >= deadline:
            raise _RequestError(f"context deadline exceeded: {reason}")
        time.sleep(wait)
    raise _RequestError("unreachable")


_HEALTHCHECKS_EXAMPLE = 'A valid example is "https://hc-ping.com/01234567-0123-0123-0123-0123456789abc"'


@dataclass(frozen=True)
class Healthchecks(Monitor):
    """A Healthchecks check identified by its success endpoint."""

    base_url: SplitResult
    timeout: float = HEALTHCHECKS_DEFAULT_TIMEOUT
    retry_wait: float = _RETRY_WAIT_MIN

    @classmethod
    def from_url(cls, ppfmt: PrettyPrinter, raw_url: str) -> Healthchecks | None:
        """Create a monitor from a ping URL; return None (after reporting) if invalid."""
        try:
            parts = _parse_url(raw_url)
        except ValueError:
            ppfmt.notice(Emoji.USER_ERROR, "Failed to parse the Healthchecks URL (redacted)")
            return None

        def invalid() -> None:
            ppfmt.notice(Emoji.USER_ERROR, "The Healthchecks URL (redacted) does not look like a valid URL")
            ppfmt.notice(Emoji.USER_ERROR, _HEALTHCHECKS_EXAMPLE)

        if not (parts.scheme and _host(parts) and not parts.query):
            invalid()
            return None

        match parts.scheme:
            case "http":
                ppfmt.notice(
                    Emoji.USER_WARNING,
                    "The Healthchecks URL (redacted) uses HTTP; please consider using HTTPS",
                )
            case "https":
                pass
            case _:
                invalid()
                return None

        return cls(parts)

    def describe(self) -> Iterator[tuple[str, str]]:
        """Yield the service name."""
        yield "Healthchecks", "(URL redacted)"

    def _ping(self, ppfmt: PrettyPrinter, endpoint: str, message: str) -> bool:
        description = _quote(endpoint) if endpoint else "default (root)"
        target = self.base_url._replace(path=_join_path(self.base_url.path, endpoint), fragment="")
        try:
            request = _prepare(target, "POST", message.encode("utf-8"))
        except ValueError as err:
            ppfmt.notice(
                Emoji.IMPOSSIBLE,
                f"Failed to prepare HTTP(S) request to the {description} endpoint of Healthchecks: {err}",
            )
            return False

        try:
            status, body = _send(request, self.timeout, self.retry_wait)
        except _RequestError as err:
            ppfmt.notice(
                Emoji.ERROR,
                f"Failed to send HTTP(S) request to the {description} endpoint of Healthchecks: {err}",
            )
            return False
        except _ReadError as err:
            ppfmt.notice(
                Emoji.ERROR,
                f"Failed to read HTTP(S) response from the {description} endpoint of Healthchecks: {err}",
            )
            return False

        text = body.decode("utf-8", errors="replace").strip()
        if status != 200 or text != "OK":
            ppfmt.notice(
                Emoji.ERROR,
                f"Failed to ping the {description} endpoint of Healthchecks; "
                f"got response code: {status} {text}",
            )
            return False

        ppfmt.info(Emoji.PING, f"Pinged the {description} endpoint of Healthchecks")
        return True

    def ping(self, ppfmt: PrettyPrinter, message: Message) -> bool:
        """Ping the root endpoint on success, /fail otherwise."""
        return self._ping(ppfmt, "" if message.ok else "/fail", message.format())

    def start(self, ppfmt: PrettyPrinter, message: str) -> bool:
        """Ping the /start endpoint."""
        return self._ping(ppfmt, "/start", message)

    def exit(self, ppfmt: PrettyPrinter, message: str) -> bool:
        """Ping the /0 endpoint."""
        return self._ping(ppfmt, "/0", message)

    def log(self, ppfmt: PrettyPrinter, message: Message) -> bool:
        """Ping /fail on failure, /log for non-empty successes, nothing otherwise."""
        if not message.ok:
            return self._ping(ppfmt, "/fail", message.format())
        if not message.is_empty():
            return self._ping(ppfmt, "/log", message.format())
        return True


def _decode_kuma_response(body: bytes) -> tuple[bool, str]:
    text = body.decode("utf-8").lstrip(" \t\r\n")
    value, _ = json.JSONDecoder().raw_decode(text)
    if value is None:
        return False, ""
    if not isinstance(value, dict):
        raise ValueError(f"cannot decode {type(value).__name__} into a response object")
    ok = value.get("ok")
    msg = value.get("msg")
    if ok is not None and not isinstance(ok, bool):
        raise ValueError("the field ok is not a boolean")
    if msg is not None and not isinstance(msg, str):
        raise ValueError("the field msg is not a string")
    return bool(ok), msg or ""


@dataclass(frozen=True)
class UptimeKuma(BasicMonitor):
    """An Uptime Kuma push monitor."""

    base_url: SplitResult
    timeout: float = UPTIME_KUMA_DEFAULT_TIMEOUT
    retry_wait: float = _RETRY_WAIT_MIN

    @classmethod
    def from_url(cls, ppfmt: PrettyPrinter, raw_url: str) -> UptimeKuma | None:
        """Create a monitor from a push URL; return None (after reporting) if invalid."""
        invalid_message = "The Uptime Kuma URL (redacted) does not look like a valid URL"
        try:
            parts = _parse_url(raw_url)
        except ValueError:
            ppfmt.notice(Emoji.USER_ERROR, "Failed to parse the Uptime Kuma URL (redacted)")
            return None

        if not (parts.scheme and _host(parts)):
            ppfmt.notice(Emoji.USER_ERROR, invalid_message)
            return None

        match parts.scheme:
            case "http":
                ppfmt.notice(
                    Emoji.USER_WARNING,
                    "The Uptime Kuma URL (redacted) uses HTTP; please consider using HTTPS",
                )
            case "https":
                pass
            case _:
                ppfmt.notice(Emoji.USER_ERROR, invalid_message)
                return None

        # The URL given by Uptime Kuma usually ends with ?status=up&msg=OK&ping=
        if parts.query:
            try:
                query = _parse_query(parts.query)
            except ValueError:
                ppfmt.notice(Emoji.USER_ERROR, invalid_message)
                return None
            expected = {"status": ["up"], "msg": ["OK"], "ping": [""]}
            for key, values in query.items():
                if expected.get(key) != values:
                    ppfmt.notice(
                        Emoji.USER_ERROR,
                        f"The Uptime Kuma URL (redacted) contains an unexpected query {key}=... "
                        "and it will be ignored",
                    )
            parts = parts._replace(query="")

        return cls(parts)

    def describe(self) -> Iterator[tuple[str, str]]:
        """Yield the service name."""
        yield "Uptime Kuma", "(URL redacted)"

    def _ping(self, ppfmt: PrettyPrinter, status: str, msg: str) -> bool:
        query = urlencode(sorted({"status": status, "msg": msg, "ping": ""}.items()))
        target = self.base_url._replace(query=query, fragment="")
        try:
            request = _prepare(target, "GET", None)
        except ValueError as err:
            ppfmt.notice(Emoji.IMPOSSIBLE, f"Failed to prepare HTTP(S) request to Uptime Kuma: {err}")
            return False

        try:
            _, body = _send(request, self.timeout, self.retry_wait)
        except _RequestError as err:
            ppfmt.notice(Emoji.ERROR, f"Failed to send HTTP(S) request to Uptime Kuma: {err}")
            return False
        except _ReadError as err:
            ppfmt.notice(Emoji.ERROR, f"Failed to parse the response from Uptime Kuma: {err}")
            return False

        try:
            ok, response_msg = _decode_kuma_response(body)
        except ValueError as err:
            ppfmt.notice(Emoji.ERROR, f"Failed to parse the response from Uptime Kuma: {err}")
            return False
        if not ok:
            ppfmt.notice(Emoji.ERROR, f"Failed to ping Uptime Kuma: {response_msg}")
            return False

        ppfmt.info(Emoji.PING, "Pinged Uptime Kuma")
        return True

    def ping(self, ppfmt: PrettyPrinter, message: Message) -> bool:
        """Ping with status=up and a fixed "OK", or status=down with the message."""
        if message.ok:
            # Uptime Kuma keeps showing the first success message, so a fixed one avoids stale text.
            return self._ping(ppfmt, "up", "OK")
        # An empty message would leave a previous (possibly successful) message in place.
        return self._ping(ppfmt, "down", message.format() or "Failing")
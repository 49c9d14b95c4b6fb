"""Pretty-printing of user-facing messages with emojis, indentation and verbosity levels."""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from enum import IntEnum, StrEnum
from typing import TextIO, TypeVar

T = TypeVar("T")


class Verbosity(IntEnum):
    """Message levels; a higher level means more verbose."""

    NOTICE = 0
    INFO = 1
    QUIET = 0
    VERBOSE = 1
    DEFAULT = 1


class Emoji(StrEnum):
    """Emojis prefixed to printed messages."""

    STAR = "🌟"
    BULLET = "🔸"

    ENV_VARS = "📖"
    CONFIG = "🔧"
    INTERNET = "🌐"
    MUTE = "🔇"
    DISABLED = "🚫"
    EXPERIMENTAL = "🧪"
    SWITCH = "🔀"

    CREATION = "🐣"
    DELETION = "💀"
    UPDATE = "📡"
    CLEAR = "🧹"

    PING = "🔔"
    NOTIFY = "📣"

    TIMEOUT = "⌛"
    SIGNAL = "🚨"
    ALREADY_DONE = "🤷"
    NOW = "🏃"
    ALARM = "⏰"
    BYE = "👋"

    GOOD = "😊"
    USER_ERROR = "😡"
    USER_WARNING = "😦"
    ERROR = "😞"
    WARNING = "😐"
    IMPOSSIBLE = "🤯"
    HINT = "💡"


# Should be wider than an emoji to look pleasing.
INDENT_PREFIX = "   "


class MessageID(IntEnum):
    """Identifiers of messages that are shown at most once."""

    UPDATE_DOCKER_TEMPLATE = 0
    AUTH_TOKEN_NEW_PREFIX = 1
    IP4_DETECTION_FAILS = 2
    IP6_DETECTION_FAILS = 3
    IP4_MAPPED_IP6_ADDRESS = 4
    DETECTION_TIMEOUTS = 5
    UPDATE_TIMEOUTS = 6
    RECORD_PERMISSION = 7
    WAF_LIST_PERMISSION = 8
    EXPERIMENTAL_SHOUTRRR = 9
    EXPERIMENTAL_WAF = 10
    EXPERIMENTAL_LOCAL_WITH_INTERFACE = 11
    UNDOCUMENTED_DEBUG_CONST_PROVIDER = 12
    UNDOCUMENTED_CUSTOM_CLOUDFLARE_TRACE_PROVIDER = 13


ISSUE_REPORTING_URL = "https://example.com/ddnskit/issues/new"
MANUAL_URL = "https://example.com/ddnskit/manual"


class PrettyPrinter:
    """Writes formatted messages to a text stream."""

    def __init__(
        self,
        writer: TextIO,
        emoji: bool = True,
        verbosity: Verbosity = Verbosity.DEFAULT,
    ) -> None:
        self._writer = writer
        self._emoji = emoji
        self._verbosity = Verbosity(verbosity)
        self._indent = 0
        self._shown: set[MessageID | int] = set()

    def is_showing(self, verbosity: Verbosity) -> bool:
        """Whether messages of the given level are printed."""
        return self._verbosity >= verbosity

    def indent(self) -> PrettyPrinter:
        """Return a printer indenting one level more, sharing the once-only state."""
        child = copy.copy(self)
        child._indent = self._indent + 1
        return child

    def blank_line_if_verbose(self) -> None:
        """Print a blank line at the verbose level."""
        if self.is_showing(Verbosity.VERBOSE):
            self._writer.write("\n")

    def _output(self, verbosity: Verbosity, emoji: Emoji | str, message: str) -> None:
        if not self.is_showing(verbosity):
            return
        prefix = INDENT_PREFIX * self._indent
        line = f"{prefix}{emoji} {message}" if self._emoji else f"{prefix}{message}"
        line = line.removesuffix("\n")
        self._writer.write(line + "\n")

    def info(self, emoji: Emoji | str, message: str) -> None:
        """Print a message at the info level."""
        self._output(Verbosity.INFO, emoji, message)

    def notice(self, emoji: Emoji | str, message: str) -> None:
        """Print a message at the notice level."""
        self._output(Verbosity.NOTICE, emoji, message)

    def suppress(self, message_id: MessageID | int) -> None:
        """Suppress all future once-only messages with this identifier."""
        self._shown.add(message_id)

    def info_once(self, message_id: MessageID | int, emoji: Emoji | str, message: str) -> None:
        """Print an info message unless this identifier was already shown."""
        if message_id not in self._shown:
            self.info(emoji, message)
            self._shown.add(message_id)

    def notice_once(self, message_id: MessageID | int, emoji: Emoji | str, message: str) -> None:
        """Print a notice unless this identifier was already shown."""
        if message_id not in self._shown:
            self.notice(emoji, message)
            self._shown.add(message_id)


def new_default(writer: TextIO) -> PrettyPrinter:
    """Create a printer with emojis at the default verbosity."""
    return PrettyPrinter(writer, True, Verbosity.DEFAULT)


def join(items: Iterable[str]) -> str:
    """Join words with commas, or give "(none)"."""
    words = list(items)
    if not words:
        return "(none)"
    return ", ".join(words)


def english_join(items: Iterable[str]) -> str:
    """Join words as in English, with an Oxford comma."""
    words = list(items)
    match words:
        case []:
            return "(none)"
        case [only]:
            return only
        case [first, second]:
            return f"{first} and {second}"
        case [*init, last]:
            return f"{', '.join(init)}, and {last}"


def join_map(f: Callable[[T], str], items: Iterable[T]) -> str:
    """Apply f to each item, then join with commas."""
    return join(f(item) for item in items)


def english_join_map(f: Callable[[T], str], items: Iterable[T]) -> str:
    """Apply f to each item, then join as in English."""
    return english_join(f(item) for item in items)
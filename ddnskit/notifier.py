"""Push notifications."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from ddnskit.pp import ISSUE_REPORTING_URL, Emoji, PrettyPrinter


@dataclass(frozen=True)
class Message:
    """Lines of a notification."""

    lines: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines))

    def format(self) -> str:
        """Turn the message into a single string."""
        return " ".join(self.lines)

    def is_empty(self) -> bool:
        """Whether the message has no lines."""
        return not self.lines


def merge_messages(*messages: Message) -> Message:
    """Concatenate the lines of all messages."""
    return Message(tuple(line for message in messages for line in message.lines))


class Notifier(ABC):
    """An abstract push-notification service."""

    @abstractmethod
    def describe(self) -> Iterator[tuple[str, str]]:
        """Yield (service name, parameters) pairs."""

    @abstractmethod
    def send(self, ppfmt: PrettyPrinter, message: Message) -> bool:
        """Send out a message; return whether it succeeded."""


class Composed(Notifier):
    """The composite of several notifiers."""

    def __init__(self, *notifiers: Notifier | None) -> None:
        flat: list[Notifier] = []
        for notifier in notifiers:
            if notifier is None:
                continue
            if isinstance(notifier, Composed):
                flat.extend(notifier.notifiers)
            else:
                flat.append(notifier)
        self.notifiers: tuple[Notifier, ...] = tuple(flat)

    def __len__(self) -> int:
        return len(self.notifiers)

    def __iter__(self) -> Iterator[Notifier]:
        return iter(self.notifiers)

    def describe(self) -> Iterator[tuple[str, str]]:
        """Yield the descriptions of every notifier in order."""
        for notifier in self.notifiers:
            yield from notifier.describe()

    def send(self, ppfmt: PrettyPrinter, message: Message) -> bool:
        """Send to each notifier, stopping at the first failure."""
        return all(notifier.send(ppfmt, message) for notifier in self.notifiers)


_SHOUTRRR_SERVICES = {
    "bark": "Bark",
    "discord": "Discord",
    "smtp": "Email",
    "gotify": "Gotify",
    "googlechat": "Google Chat",
    "ifttt": "IFTTT",
    "join": "Join",
    "mattermost": "Mattermost",
    "matrix": "Matrix",
    "ntfy": "Ntfy",
    "opsgenie": "OpsGenie",
    "pushbullet": "Pushbullet",
    "pushover": "Pushover",
    "rocketchat": "Rocketchat",
    "slack": "Slack",
    "teams": "Teams",
    "telegram": "Telegram",
    "zulip": "Zulip Chat",
    "generic": "Generic",
}


def describe_shoutrrr_service(ppfmt: PrettyPrinter, proto: str) -> str:
    """Give a human-readable name for a notification service scheme."""
    name = _SHOUTRRR_SERVICES.get(proto)
    if name is not None:
        return name
    ppfmt.notice(
        Emoji.IMPOSSIBLE,
        f"Unknown shoutrrr service name {json.dumps(proto, ensure_ascii=False)}; "
        f"please report it at {ISSUE_REPORTING_URL}",
    )
    return proto.title()


def _as_message(lines: Iterable[str]) -> Message:
    return Message(tuple(lines))
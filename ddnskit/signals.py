"""Catching SIGINT and SIGTERM while waiting."""

from __future__ import annotations

import signal
import time
from collections import deque
from datetime import datetime
from types import FrameType
from typing import Any

from ddnskit.pp import Emoji, PrettyPrinter

SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)

_POLL_INTERVAL = 0.02


class SignalHandle:
    """Catches the signals in SIGNALS while active as a context manager."""

    def __init__(self) -> None:
        self._pending: deque[signal.Signals] = deque()
        self._previous: dict[signal.Signals, Any] = {}

    def _handler(self, signum: int, _frame: FrameType | None) -> None:
        self._pending.append(signal.Signals(signum))

    def __enter__(self) -> SignalHandle:
        for sig in SIGNALS:
            self._previous[sig] = signal.signal(sig, self._handler)
        return self

    def __exit__(self, *args: object) -> None:
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()

    def wait_for_signals_until(self, ppfmt: PrettyPrinter, deadline: datetime) -> bool:
        """Wait until the deadline; return True if a caught signal interrupted the wait."""
        while True:
            if self._pending:
                sig = self._pending.popleft()
                ppfmt.notice(Emoji.SIGNAL, f"Caught signal: {sig.name}")
                return True
            remaining = (deadline - datetime.now(deadline.tzinfo)).total_seconds()
            if remaining <= 0:
                return False
            time.sleep(min(_POLL_INTERVAL, remaining))
"""Ordered conversation log shared by chat-family exchanges."""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Any, AsyncIterator, Iterable, Mapping

from ..ai_types import Role, Turn
from ..errors import ConcurrentExchangeError

LOGGER = logging.getLogger(__name__)


class ConversationHistory:
    """Ordered, oldest-first log of user/assistant turns.

    The system prompt is never stored here; it is injected fresh for each request.
    Request assembly reads :meth:`snapshot` and never writes back, so trimming a
    request to fit the token budget leaves the stored log intact.

    At most one chat exchange may be outstanding per history. :meth:`exchange`
    enforces that precondition by raising :class:`ConcurrentExchangeError`
    instead of queueing; callers that issue concurrent requests must serialize
    them themselves.
    """

    def __init__(self, turns: Iterable[Turn | Mapping[str, Any]] | None = None) -> None:
        self._lock = threading.Lock()
        self._turns: list[Turn] = []
        self._busy = False
        if turns:
            self.replace(turns)

    def append(self, user_text: str, assistant_text: str) -> None:
        pair = (Turn.user(user_text), Turn.assistant(assistant_text))
        with self._lock:
            self._turns.extend(pair)
            size = len(self._turns)
        LOGGER.debug("Conversation history grew to %s turn(s)", size)

    def replace(self, turns: Iterable[Turn | Mapping[str, Any]]) -> None:
        normalized = [_coerce_turn(turn) for turn in turns]
        if any(turn.role is Role.SYSTEM for turn in normalized):
            raise ValueError("Conversation history cannot contain system turns")
        with self._lock:
            self._turns = normalized

    def clear(self) -> None:
        with self._lock:
            self._turns = []

    def snapshot(self) -> tuple[Turn, ...]:
        with self._lock:
            return tuple(self._turns)

    def export(self) -> list[dict[str, str]]:
        return [turn.to_dict() for turn in self.snapshot()]

    @property
    def busy(self) -> bool:
        return self._busy

    @contextlib.asynccontextmanager
    async def exchange(self) -> AsyncIterator["ConversationHistory"]:
        """Hold the history for the duration of one chat exchange."""

        with self._lock:
            if self._busy:
                raise ConcurrentExchangeError(
                    "Another chat exchange is already in flight for this conversation"
                )
            self._busy = True
        try:
            yield self
        finally:
            with self._lock:
                self._busy = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._turns)

    def __iter__(self):
        return iter(self.snapshot())


def _coerce_turn(value: Turn | Mapping[str, Any]) -> Turn:
    if isinstance(value, Turn):
        return value
    if isinstance(value, Mapping):
        return Turn.from_dict(value)
    raise TypeError(f"Cannot build a conversation turn from {type(value).__name__}")

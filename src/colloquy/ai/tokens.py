"""Token counting used to cost candidate requests."""

from __future__ import annotations

import functools
import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, Union, cast

import tiktoken

from .ai_types import TokenCounterProtocol, Turn

LOGGER = logging.getLogger(__name__)
_FALLBACK_ENCODING = "cl100k_base"

TokenCounter = Union[TokenCounterProtocol, Callable[[str], int]]


@dataclass(frozen=True, slots=True)
class ApproxByteCounter:
    """Tokens approximated as UTF-8 bytes divided by ``bytes_per_token``, rounded up."""

    bytes_per_token: int = 4

    def count(self, text: str) -> int:
        return math.ceil(len(text.encode("utf-8")) / max(1, self.bytes_per_token))


class TiktokenCounter:
    """Exact token counts from the tiktoken encoding of a chat model.

    Models tiktoken has no mapping for (custom deployments, proxies) are counted
    with ``cl100k_base``.
    """

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name
        try:
            self._encoding = tiktoken.encoding_for_model(model_name)
        except KeyError:
            LOGGER.debug("No tiktoken mapping for %s; counting with %s", model_name, _FALLBACK_ENCODING)
            self._encoding = tiktoken.get_encoding(_FALLBACK_ENCODING)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))


@functools.lru_cache(maxsize=None)
def counter_for_model(model_name: str) -> TiktokenCounter:
    """Return the process-wide counter for *model_name*; encodings load once."""

    return TiktokenCounter(model_name)


class TokenBudgetEstimator:
    """Computes the token cost of a candidate turn sequence.

    The contents of every turn are concatenated (role labels are not counted) and
    the tokenizer runs once over the result.
    """

    def __init__(self, counter: TokenCounter) -> None:
        if hasattr(counter, "count"):
            self._count = cast(TokenCounterProtocol, counter).count
        elif callable(counter):
            self._count = counter
        else:
            raise TypeError("counter must be callable or implement count()")

    def cost(self, turns: Iterable[Turn]) -> int:
        return int(self._count("".join(turn.content for turn in turns)))

    def count_text(self, text: str) -> int:
        return int(self._count(text or ""))

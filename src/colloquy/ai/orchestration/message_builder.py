"""Message construction and token budgeting for chat exchanges."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Sequence, cast

from openai.types.chat import ChatCompletionMessageParam

from ..ai_types import AssembledRequest, ContentPart, Turn, UserContent
from ..tokens import TokenBudgetEstimator

LOGGER = logging.getLogger(__name__)
DEFAULT_TOKEN_BUDGET = 4096


class MessageAssembler:
    """Builds token-bounded message sequences for chat turns.

    The window slides by evicting the oldest history turns one at a time until the
    sequence fits. The system prompt and the new user turn are never truncated; if
    they alone exceed the budget the request is returned over budget and the
    service decides.
    """

    def __init__(self, estimator: TokenBudgetEstimator, *, budget: int = DEFAULT_TOKEN_BUDGET) -> None:
        """Initialize the assembler.

        Args:
            estimator: Token estimator used to cost candidate sequences.
            budget: Maximum token cost of an assembled request.
        """
        if budget <= 0:
            raise ValueError("budget must be a positive token count")
        self._estimator = estimator
        self._budget = int(budget)

    @property
    def budget(self) -> int:
        return self._budget

    def assemble(
        self,
        new_user_text: str,
        system_text: str,
        history: Sequence[Turn],
    ) -> AssembledRequest:
        """Assemble system + history + new user turn within the token budget.

        Args:
            new_user_text: Text of the turn being sent.
            system_text: System prompt injected for this request only.
            history: Immutable snapshot of the stored conversation.

        Returns:
            The assembled request. ``history`` itself is never modified.
        """
        system_turn = Turn.system(system_text)
        new_turn = Turn.user(new_user_text)
        window: deque[Turn] = deque(history)
        evicted = 0

        cost = self._cost(system_turn, window, new_turn)
        while cost > self._budget and window:
            window.popleft()
            evicted += 1
            cost = self._cost(system_turn, window, new_turn)

        over_budget = cost > self._budget
        if over_budget:
            LOGGER.warning(
                "System prompt and new turn cost %s tokens, above the %s token budget; sending anyway",
                cost,
                self._budget,
            )
        elif evicted:
            LOGGER.debug("Evicted %s oldest turn(s) to fit %s token budget", evicted, self._budget)

        return AssembledRequest(
            system_turn=system_turn,
            history_turns=tuple(window),
            new_turn=new_turn,
            token_cost=cost,
            evicted=evicted,
            over_budget=over_budget,
        )

    def to_chat_params(
        self,
        request: AssembledRequest,
        *,
        user_content: UserContent | None = None,
    ) -> list[ChatCompletionMessageParam]:
        """Map an assembled request onto wire messages.

        ``user_content`` replaces the new turn's plain text with multi-part content
        (text and image parts) for vision requests.
        """
        messages: list[ChatCompletionMessageParam] = [_turn_param(turn) for turn in request.turns[:-1]]
        if user_content is None:
            messages.append(_turn_param(request.new_turn))
        else:
            messages.append(cast(ChatCompletionMessageParam, {"role": "user", "content": _content_param(user_content)}))
        return messages

    def _cost(self, system_turn: Turn, window: deque[Turn], new_turn: Turn) -> int:
        return self._estimator.cost((system_turn, *window, new_turn))


def _turn_param(turn: Turn) -> ChatCompletionMessageParam:
    return cast(ChatCompletionMessageParam, turn.to_dict())


def _content_param(content: UserContent) -> str | list[dict[str, Any]]:
    if isinstance(content, str):
        return content
    return [cast(ContentPart, part).to_param() for part in content]

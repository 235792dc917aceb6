"""Closed error taxonomy for dispatched remote operations.

Every failure surfaced by :class:`~colloquy.ai.client.AIClient` is one of the
three concrete classes below, each carrying structured details rather than
formatted text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from .ai_types import RemoteOperation


class FailureKind(str, Enum):
    """Failure categories reported by the response classifier."""

    TRANSPORT_ERROR = "transport_error"
    SERVICE_REJECTED = "service_rejected"
    EMPTY_RESPONSE = "empty_response"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class ChatClientError(Exception):
    """Base exception for classified remote operation failures.

    Attributes:
        operation: The remote operation that failed.
        message: Human-readable description.
        details: Additional structured diagnostics.
    """

    operation: RemoteOperation
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[FailureKind]

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": self.kind.value,
            "operation": self.operation.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.operation.value}: {self.message}"


@dataclass
class TransportError(ChatClientError):
    """The transport failed before any response existed."""

    message: str = "Request failed before a response was received"
    cause: BaseException | None = None

    kind: ClassVar[FailureKind] = FailureKind.TRANSPORT_ERROR

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result


@dataclass
class ServiceRejected(ChatClientError):
    """The service answered with a non-success status."""

    message: str = "Service rejected the request"
    status_code: int | None = None
    payload: Any = None

    kind: ClassVar[FailureKind] = FailureKind.SERVICE_REJECTED

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["status_code"] = self.status_code
        if self.payload is not None:
            result["payload"] = self.payload
        return result


@dataclass
class EmptyResponse(ChatClientError):
    """The service answered successfully but with no usable content."""

    message: str = "No Response"

    kind: ClassVar[FailureKind] = FailureKind.EMPTY_RESPONSE


class ConcurrentExchangeError(RuntimeError):
    """Raised when a second chat exchange starts on a history that is already busy."""

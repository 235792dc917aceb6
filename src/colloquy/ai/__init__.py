"""Conversation client, request assembly, and response classification."""

from .ai_types import AssembledRequest, RemoteOperation, Role, ThreadReply, Turn
from .classifier import Outcome, ResponseClassifier
from .client import AIClient, ClientSettings
from .errors import (
    ChatClientError,
    ConcurrentExchangeError,
    EmptyResponse,
    FailureKind,
    ServiceRejected,
    TransportError,
)
from .memory import ConversationHistory
from .orchestration import MessageAssembler
from .tokens import ApproxByteCounter, TiktokenCounter, TokenBudgetEstimator, counter_for_model

__all__ = [
    "AIClient",
    "ApproxByteCounter",
    "AssembledRequest",
    "ChatClientError",
    "ClientSettings",
    "ConcurrentExchangeError",
    "ConversationHistory",
    "EmptyResponse",
    "FailureKind",
    "MessageAssembler",
    "Outcome",
    "RemoteOperation",
    "ResponseClassifier",
    "Role",
    "ServiceRejected",
    "ThreadReply",
    "TiktokenCounter",
    "TokenBudgetEstimator",
    "TransportError",
    "Turn",
    "counter_for_model",
]

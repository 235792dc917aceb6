"""Request assembly for chat exchanges."""

from .message_builder import DEFAULT_TOKEN_BUDGET, MessageAssembler

__all__ = ["DEFAULT_TOKEN_BUDGET", "MessageAssembler"]

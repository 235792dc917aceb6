"""Conversation memory helpers."""

from .history import ConversationHistory

__all__ = ["ConversationHistory"]

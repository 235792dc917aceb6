"""Maps transport and service outcomes onto the closed failure taxonomy."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Generic, Iterable, TypeVar

import httpx
from openai import APIConnectionError, APIError, APIResponseValidationError, APIStatusError
from openai.types.chat import ChatCompletion, ChatCompletionMessage

from .ai_types import ImageFileContent, RemoteOperation, TextContent, ThreadMessageContent
from .errors import ChatClientError, EmptyResponse, FailureKind, ServiceRejected, TransportError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Exceptions that signal the request never produced a response.
TRANSPORT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    APIConnectionError,
    httpx.TransportError,
    asyncio.TimeoutError,
)
# APIError covers status errors, unparseable bodies and error events inside a stream.
CLASSIFIED_EXCEPTIONS: tuple[type[BaseException], ...] = TRANSPORT_EXCEPTIONS + (APIError,)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Tagged result of a dispatched operation: a payload or a classified failure."""

    payload: T | None = None
    error: ChatClientError | None = None

    @classmethod
    def success(cls, payload: T) -> "Outcome[T]":
        return cls(payload=payload)

    @classmethod
    def failure(cls, error: ChatClientError) -> "Outcome[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> FailureKind | None:
        return None if self.error is None else self.error.kind

    def unwrap(self) -> T:
        """Return the payload or raise the classified failure."""

        if self.error is not None:
            cause = getattr(self.error, "cause", None)
            raise self.error from cause
        return self.payload  # type: ignore[return-value]


class ResponseClassifier:
    """Interprets raw outcomes of remote calls per operation kind."""

    def classify_exception(self, operation: RemoteOperation, exc: BaseException) -> Outcome[Any]:
        """Classify an exception raised by the transport or the SDK.

        Transport failures are checked first since ``APIConnectionError`` is itself an
        ``APIError``. A ``CancelledError`` only reaches this point when the transport
        abandoned the call on its own; cancellation of the calling task is re-raised
        by the dispatcher before classification. Anything outside these families is
        a local bug and is re-raised unchanged.
        """

        error: ChatClientError
        if isinstance(exc, TRANSPORT_EXCEPTIONS + (asyncio.CancelledError,)):
            error = TransportError(
                operation=operation,
                message=str(exc) or type(exc).__name__,
                cause=exc,
            )
        elif isinstance(exc, APIResponseValidationError):
            error = EmptyResponse(
                operation=operation,
                message=f"Response body failed validation: {exc.message}",
                details={"status_code": exc.status_code},
            )
        elif isinstance(exc, APIStatusError):
            error = ServiceRejected(
                operation=operation,
                message=f"OpenAI client error - status code: {exc.status_code}",
                status_code=exc.status_code,
                payload=_error_payload(exc),
            )
        elif isinstance(exc, APIError):
            error = ServiceRejected(
                operation=operation,
                message=f"OpenAI reported an error: {exc.message}",
                payload=exc.body,
            )
        else:
            raise exc
        return Outcome.failure(error)

    def classify_completion(self, operation: RemoteOperation, completion: ChatCompletion) -> Outcome[ChatCompletionMessage]:
        """Extract ``choices[0].message`` from a chat completion."""

        choices = list(getattr(completion, "choices", None) or [])
        if not choices:
            return Outcome.failure(EmptyResponse(operation=operation, message="Completion contained no choices"))
        message = getattr(choices[0], "message", None)
        if message is None:
            return Outcome.failure(EmptyResponse(operation=operation, message="First choice carried no message"))
        return Outcome.success(message)

    def classify_completion_text(self, operation: RemoteOperation, completion: ChatCompletion) -> Outcome[str]:
        """Extract the assistant text of ``choices[0]``."""

        outcome = self.classify_completion(operation, completion)
        if not outcome.ok:
            return Outcome.failure(outcome.error)  # type: ignore[arg-type]
        content = getattr(outcome.payload, "content", None)
        if content is None:
            return Outcome.failure(EmptyResponse(operation=operation, message="No Response"))
        return Outcome.success(str(content))

    def classify_http_response(self, operation: RemoteOperation, response: httpx.Response) -> Outcome[str]:
        """Judge a raw HTTP response purely by its status code."""

        if response.status_code != 200:
            return Outcome.failure(
                ServiceRejected(
                    operation=operation,
                    message=f"Invalid Status Code {response.status_code}",
                    status_code=response.status_code,
                    payload=response.text,
                )
            )
        return Outcome.success(response.text)

    def resolve_thread_content(self, blocks: Iterable[Any]) -> ThreadMessageContent | None:
        """Return the first recognised content block of a thread message."""

        for block in blocks:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                return TextContent(value=str(block.text.value))
            if block_type == "image_file":
                return ImageFileContent(file_id=str(block.image_file.file_id))
            LOGGER.debug("Skipping unsupported thread content block %r", block_type)
        return None


def content_payload(content: ThreadMessageContent) -> str:
    if isinstance(content, TextContent):
        return content.value
    if isinstance(content, ImageFileContent):
        return content.file_id
    raise TypeError(f"Unknown thread content variant: {type(content).__name__}")


def _error_payload(exc: BaseException) -> Any:
    body = getattr(exc, "body", None)
    if body is not None:
        return body
    response = getattr(exc, "response", None)
    if isinstance(response, httpx.Response):
        try:
            return response.text
        except httpx.ResponseNotRead:
            return None
    return None

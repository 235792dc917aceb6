"""Async conversation client built around OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import base64
import contextlib
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, Mapping, Sequence, TypeVar

import httpx
from openai import AsyncOpenAI
from openai.types.chat import (
    ChatCompletion,
    ChatCompletionMessage,
    ChatCompletionMessageParam,
    ChatCompletionToolChoiceOptionParam,
    ChatCompletionToolParam,
)

from .ai_types import ImagePart, RemoteOperation, TextPart, ThreadReply, TokenCounterProtocol, Turn
from .classifier import CLASSIFIED_EXCEPTIONS, Outcome, ResponseClassifier, content_payload
from .errors import EmptyResponse
from .memory.history import ConversationHistory
from .orchestration.message_builder import DEFAULT_TOKEN_BUDGET, MessageAssembler
from .tokens import ApproxByteCounter, TokenBudgetEstimator, TokenCounter, counter_for_model

LOGGER = logging.getLogger(__name__)
T = TypeVar("T")

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_SYSTEM_TEXT = "You're a helpful assistant"
DEFAULT_TEMPERATURE = 0.5
DEFAULT_FUNCTION_SYSTEM_TEXT = (
    "Don't make assumptions about what values to plug into functions. "
    "Ask for clarification if a user request is ambiguous."
)


@dataclass(frozen=True, slots=True)
class ClientSettings:
    """Immutable configuration required to build the conversation client."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    organization: str | None = None
    token_budget: int = DEFAULT_TOKEN_BUDGET
    system_text: str = DEFAULT_SYSTEM_TEXT
    temperature: float = DEFAULT_TEMPERATURE
    chat_model: str = "gpt-4-turbo"
    vision_model: str = "gpt-4-turbo"
    function_model: str = "gpt-4"
    function_system_text: str = DEFAULT_FUNCTION_SYSTEM_TEXT
    thread_model: str = "gpt-4-turbo"
    thread_temperature: float = 0.2
    speech_model: str = "tts-1"
    speech_voice: str = "alloy"
    speech_format: str = "aac"
    transcription_model: str = "whisper-1"
    transcription_language: str = "en"
    request_timeout: float | None = 90.0
    transcription_timeout: float = 30.0
    max_retries: int = 0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """Dispatches conversation operations and classifies their outcomes.

    Each operation is sent exactly once; transport-level retries are the business of
    the underlying ``AsyncOpenAI`` transport (``max_retries``). Failures surface as
    :class:`~colloquy.ai.errors.TransportError`,
    :class:`~colloquy.ai.errors.ServiceRejected` or
    :class:`~colloquy.ai.errors.EmptyResponse` and never mutate the history.

    Only successful :meth:`send_message`, :meth:`stream_message` and
    :meth:`analyze_image` exchanges grow the conversation history. Chat-family
    calls must not overlap on one client; a second concurrent call raises
    :class:`~colloquy.ai.errors.ConcurrentExchangeError`.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
        history: ConversationHistory | None = None,
        token_counter: TokenCounter | None = None,
        classifier: ResponseClassifier | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._history = history or ConversationHistory()
        self._token_counter = token_counter
        self._classifier = classifier or ResponseClassifier()
        self._assembler: MessageAssembler | None = None

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def history(self) -> ConversationHistory:
        return self._history

    @property
    def history_list(self) -> tuple[Turn, ...]:
        return self._history.snapshot()

    def append_to_history(self, user_text: str, response_text: str) -> None:
        self._history.append(user_text, response_text)

    def replace_history(self, turns: Iterable[Turn | Mapping[str, Any]]) -> None:
        self._history.replace(turns)

    def clear_history(self) -> None:
        self._history.clear()

    @property
    def assembler(self) -> MessageAssembler:
        if self._assembler is None:
            counter = self._token_counter or self._default_token_counter()
            self._assembler = MessageAssembler(
                TokenBudgetEstimator(counter),
                budget=self._settings.token_budget,
            )
        return self._assembler

    # ------------------------------------------------------------------
    # Chat family
    # ------------------------------------------------------------------
    async def send_message(
        self,
        text: str,
        *,
        model: str | None = None,
        system_text: str | None = None,
        temperature: float | None = None,
    ) -> str:
        """Send *text* with the trimmed history and return the assistant reply."""

        operation = RemoteOperation.CHAT_COMPLETION
        async with self._history.exchange():
            request = self.assembler.assemble(text, self._system_text(system_text), self._history.snapshot())
            payload = self._build_chat_payload(
                model=model or self._settings.chat_model,
                messages=self.assembler.to_chat_params(request),
                temperature=self._temperature(temperature),
            )
            completion = await self._create_completion(operation, payload, evicted=request.evicted)
            reply = self._settle(self._classifier.classify_completion_text(operation, completion))
            self._history.append(text, reply)
            return reply

    @contextlib.asynccontextmanager
    async def stream_message(
        self,
        text: str,
        *,
        model: str | None = None,
        system_text: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        """Stream the assistant reply to *text* fragment by fragment.

        Use as ``async with client.stream_message(text) as fragments:`` and iterate
        ``fragments``. The sequence ends when the service reports a ``stop`` finish
        reason. History is only extended once the stream has completed. Leaving the
        block early (``break``, an exception or cancellation) closes the stream,
        releases the conversation and leaves history untouched.
        """

        fragments = self._stream_fragments(text, model=model, system_text=system_text, temperature=temperature)
        async with contextlib.aclosing(fragments):
            yield fragments

    async def _stream_fragments(
        self,
        text: str,
        *,
        model: str | None,
        system_text: str | None,
        temperature: float | None,
    ) -> AsyncIterator[str]:
        operation = RemoteOperation.CHAT_COMPLETION
        async with self._history.exchange():
            request = self.assembler.assemble(text, self._system_text(system_text), self._history.snapshot())
            payload = self._build_chat_payload(
                model=model or self._settings.chat_model,
                messages=self.assembler.to_chat_params(request),
                temperature=self._temperature(temperature),
                stream=True,
            )
            self._log_dispatch(operation, payload, evicted=request.evicted)
            stream = self._settle(await self._dispatch(operation, lambda: self._client.chat.completions.create(**payload)))
            fragments: list[str] = []
            try:
                async with contextlib.aclosing(self._iterate_stream(operation, stream)) as chunks:
                    async for chunk in chunks:
                        choices = list(getattr(chunk, "choices", None) or [])
                        if not choices:
                            self._settle(Outcome.failure(EmptyResponse(operation=operation, message="Invalid data")))
                        choice = choices[0]
                        if getattr(choice, "finish_reason", None) == "stop":
                            break
                        delta = getattr(getattr(choice, "delta", None), "content", None) or ""
                        if delta:
                            fragments.append(delta)
                            yield delta
            finally:
                await _maybe_close(stream)
            self._history.append(text, "".join(fragments))

    async def analyze_image(
        self,
        image: str | bytes,
        text: str,
        *,
        model: str | None = None,
        system_text: str | None = None,
        temperature: float | None = None,
        detail: str = "high",
    ) -> str:
        """Ask about a JPEG image (base64 text or raw bytes) alongside *text*."""

        operation = RemoteOperation.VISION_CHAT_COMPLETION
        encoded = base64.b64encode(image).decode("ascii") if isinstance(image, (bytes, bytearray)) else image
        content = [ImagePart(url=f"data:image/jpeg;base64,{encoded}", detail=detail), TextPart(text=text)]
        async with self._history.exchange():
            request = self.assembler.assemble(text, self._system_text(system_text), self._history.snapshot())
            payload = self._build_chat_payload(
                model=model or self._settings.vision_model,
                messages=self.assembler.to_chat_params(request, user_content=content),
                temperature=self._temperature(temperature),
            )
            completion = await self._create_completion(operation, payload, evicted=request.evicted)
            reply = self._settle(self._classifier.classify_completion_text(operation, completion))
            self._history.append(text, reply)
            return reply

    async def call_function(
        self,
        prompt: str,
        tools: Iterable[ChatCompletionToolParam],
        *,
        model: str | None = None,
        system_text: str | None = None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None = None,
    ) -> ChatCompletionMessage:
        """Offer *tools* to the model and return the raw first-choice message.

        The reply may consist solely of tool calls, so history is left untouched;
        callers append the exchange themselves once they have a textual answer.
        """

        operation = RemoteOperation.TOOL_CALL_COMPLETION
        async with self._history.exchange():
            request = self.assembler.assemble(
                prompt,
                system_text or self._settings.function_system_text,
                self._history.snapshot(),
            )
            payload = self._build_chat_payload(
                model=model or self._settings.function_model,
                messages=self.assembler.to_chat_params(request),
                tools=tools,
                tool_choice=tool_choice,
            )
            completion = await self._create_completion(operation, payload, evicted=request.evicted)
            return self._settle(self._classifier.classify_completion(operation, completion))

    # ------------------------------------------------------------------
    # Assistant threads
    # ------------------------------------------------------------------
    async def create_thread(
        self,
        text: str,
        assistant_id: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
    ) -> ThreadReply:
        """Run *assistant_id* on a fresh thread seeded with *text*.

        Returns the newest assistant message and the thread id; the message is empty
        when the assistant has not answered yet. Messages are read newest first so the
        reply is on the first page however long the thread is.
        """

        operation = RemoteOperation.THREAD_RUN
        run_kwargs: Dict[str, Any] = {
            "assistant_id": assistant_id,
            "thread": {"messages": [{"role": "user", "content": text}]},
            "model": model or self._settings.thread_model,
            "temperature": self._settings.thread_temperature if temperature is None else temperature,
            "stream": False,
        }
        LOGGER.debug("Creating thread run for assistant %s", assistant_id)
        run = self._settle(await self._dispatch(operation, lambda: self._client.beta.threads.create_and_run(**run_kwargs)))
        thread_id = str(run.thread_id)

        page = self._settle(
            await self._dispatch(
                operation,
                lambda: self._client.beta.threads.messages.list(thread_id=thread_id, order="desc"),
            )
        )
        latest = next(
            (message for message in getattr(page, "data", None) or [] if getattr(message, "role", None) == "assistant"),
            None,
        )
        if latest is None:
            LOGGER.debug("Thread %s has no assistant message yet", thread_id)
            return ThreadReply("", thread_id)
        content = self._classifier.resolve_thread_content(getattr(latest, "content", None) or [])
        if content is None:
            return ThreadReply("", thread_id)
        return ThreadReply(content_payload(content), thread_id)

    async def delete_thread(self, thread_id: str) -> bool:
        operation = RemoteOperation.THREAD_RUN
        result = self._settle(await self._dispatch(operation, lambda: self._client.beta.threads.delete(thread_id)))
        return bool(getattr(result, "deleted", False))

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------
    async def generate_speech(
        self,
        text: str,
        *,
        model: str | None = None,
        voice: str | None = None,
        response_format: str | None = None,
    ) -> bytes:
        """Synthesize *text* and return the complete audio container."""

        operation = RemoteOperation.SPEECH_SYNTHESIS
        request: Dict[str, Any] = {
            "model": model or self._settings.speech_model,
            "voice": voice or self._settings.speech_voice,
            "input": text,
            "response_format": response_format or self._settings.speech_format,
        }

        async def _collect() -> bytes:
            buffer = bytearray()
            async with self._client.audio.speech.with_streaming_response.create(**request) as response:
                async for chunk in response.iter_bytes():
                    buffer.extend(chunk)
            return bytes(buffer)

        LOGGER.debug("Requesting speech via %s (%s)", request["model"], request["voice"])
        return self._settle(await self._dispatch(operation, _collect))

    async def transcribe_audio(
        self,
        audio: bytes,
        *,
        file_name: str = "recording.m4a",
        model: str | None = None,
        language: str | None = None,
    ) -> str:
        """Transcribe *audio* through a raw multipart request and return the text."""

        operation = RemoteOperation.TRANSCRIPTION
        url = f"{self._settings.base_url.rstrip('/')}/audio/transcriptions"
        files = {"file": (file_name, audio, "audio/mpeg")}
        data = {
            "model": model or self._settings.transcription_model,
            "language": language or self._settings.transcription_language,
            "response_format": "text",
        }
        headers = {"Authorization": f"Bearer {self._settings.api_key}"}
        http_client = self._get_http_client()
        LOGGER.debug("Uploading %s byte(s) of audio for transcription", len(audio))
        response = self._settle(
            await self._dispatch(
                operation,
                lambda: http_client.post(
                    url,
                    files=files,
                    data=data,
                    headers=headers,
                    timeout=self._settings.transcription_timeout,
                ),
            )
        )
        return self._settle(self._classifier.classify_http_response(operation, response))

    async def aclose(self) -> None:
        """Close the underlying clients to release network resources."""

        await _maybe_close(self._client)
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _dispatch(self, operation: RemoteOperation, call: Callable[[], Awaitable[T]]) -> Outcome[T]:
        try:
            result = await call()
        except CLASSIFIED_EXCEPTIONS as exc:
            return self._classifier.classify_exception(operation, exc)
        except asyncio.CancelledError as exc:
            if _caller_cancelled():
                raise
            return self._classifier.classify_exception(operation, exc)
        return Outcome.success(result)

    def _settle(self, outcome: Outcome[T]) -> T:
        if not outcome.ok:
            LOGGER.warning("Operation failed: %s", outcome.error)
        return outcome.unwrap()

    async def _create_completion(self, operation: RemoteOperation, payload: Mapping[str, Any], *, evicted: int) -> ChatCompletion:
        self._log_dispatch(operation, payload, evicted=evicted)
        return self._settle(await self._dispatch(operation, lambda: self._client.chat.completions.create(**payload)))

    async def _iterate_stream(self, operation: RemoteOperation, stream: Any) -> AsyncIterator[Any]:
        iterator = stream.__aiter__()
        while True:
            try:
                chunk = await iterator.__anext__()
            except StopAsyncIteration:
                return
            except CLASSIFIED_EXCEPTIONS as exc:
                self._settle(self._classifier.classify_exception(operation, exc))
            except asyncio.CancelledError as exc:
                if _caller_cancelled():
                    raise
                self._settle(self._classifier.classify_exception(operation, exc))
            yield chunk

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            max_retries=max(0, settings.max_retries),
            default_headers=headers,
        )

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
            self._owns_http_client = True
        return self._http_client

    def _default_token_counter(self) -> TokenCounterProtocol:
        model_name = self._settings.chat_model
        try:
            return counter_for_model(model_name)
        except Exception as exc:
            LOGGER.warning("tiktoken unavailable for %s (%s); using approximate byte counter", model_name, exc)
            return ApproxByteCounter()

    def _system_text(self, override: str | None) -> str:
        return self._settings.system_text if override is None else override

    def _temperature(self, override: float | None) -> float:
        return self._settings.temperature if override is None else override

    def _build_chat_payload(
        self,
        *,
        model: str,
        messages: Sequence[ChatCompletionMessageParam],
        temperature: float | None = None,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None = None,
        stream: bool = False,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": list(messages),
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if tools:
            payload["tools"] = list(tools)
        if tool_choice:
            payload["tool_choice"] = tool_choice
        if stream:
            payload["stream"] = True
        return payload

    def _log_dispatch(self, operation: RemoteOperation, payload: Mapping[str, Any], *, evicted: int) -> None:
        LOGGER.debug(
            "Dispatching %s via %s with %s message(s) (%s evicted)",
            operation.value,
            payload.get("model"),
            len(payload.get("messages", ())),
            evicted,
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)


def _caller_cancelled() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


async def _maybe_close(resource: Any) -> None:
    close = getattr(resource, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result

"""Tests for response classification."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError, APIError, APIResponseValidationError, APIStatusError, APITimeoutError

from colloquy.ai.ai_types import ImageFileContent, RemoteOperation, TextContent
from colloquy.ai.classifier import Outcome, ResponseClassifier, content_payload
from colloquy.ai.errors import EmptyResponse, FailureKind, ServiceRejected, TransportError

_REQUEST = httpx.Request("POST", "https://api.test/v1/chat/completions")
_CHAT = RemoteOperation.CHAT_COMPLETION


def _status_error(code: int) -> APIStatusError:
    body = {"error": {"message": "boom"}}
    response = httpx.Response(code, request=_REQUEST, json=body)
    return APIStatusError("boom", response=response, body=body)


def _completion(*choices: SimpleNamespace) -> SimpleNamespace:
    return SimpleNamespace(choices=list(choices))


def test_status_errors_classify_as_service_rejected() -> None:
    outcome = ResponseClassifier().classify_exception(_CHAT, _status_error(500))

    assert outcome.kind is FailureKind.SERVICE_REJECTED
    error = outcome.error
    assert isinstance(error, ServiceRejected)
    assert error.status_code == 500
    assert error.payload == {"error": {"message": "boom"}}
    assert error.to_dict()["status_code"] == 500


@pytest.mark.parametrize(
    "exc",
    [
        APIConnectionError(request=_REQUEST),
        APITimeoutError(request=_REQUEST),
        httpx.ConnectError("refused", request=_REQUEST),
        asyncio.TimeoutError(),
        asyncio.CancelledError(),
    ],
)
def test_failures_before_response_classify_as_transport_error(exc: BaseException) -> None:
    outcome = ResponseClassifier().classify_exception(_CHAT, exc)

    assert outcome.kind is FailureKind.TRANSPORT_ERROR
    assert isinstance(outcome.error, TransportError)
    assert outcome.error.cause is exc


def test_unrelated_exceptions_are_not_classified() -> None:
    with pytest.raises(KeyError):
        ResponseClassifier().classify_exception(_CHAT, KeyError("bug"))


def test_completion_without_choices_is_empty_response() -> None:
    outcome = ResponseClassifier().classify_completion(_CHAT, _completion())

    assert outcome.kind is FailureKind.EMPTY_RESPONSE
    with pytest.raises(EmptyResponse):
        outcome.unwrap()


def test_completion_text_requires_content() -> None:
    classifier = ResponseClassifier()
    missing = _completion(SimpleNamespace(message=SimpleNamespace(content=None)))
    present = _completion(SimpleNamespace(message=SimpleNamespace(content="hello")))

    assert classifier.classify_completion_text(_CHAT, missing).kind is FailureKind.EMPTY_RESPONSE
    success = classifier.classify_completion_text(_CHAT, present)
    assert success.ok
    assert success.kind is None
    assert success.unwrap() == "hello"


def test_http_response_judged_by_status_only() -> None:
    classifier = ResponseClassifier()
    operation = RemoteOperation.TRANSCRIPTION

    ok = classifier.classify_http_response(operation, httpx.Response(200, text="hello world\n"))
    rejected = classifier.classify_http_response(operation, httpx.Response(401, text="unauthorized"))

    assert ok.unwrap() == "hello world\n"
    assert rejected.kind is FailureKind.SERVICE_REJECTED
    assert rejected.error.status_code == 401
    assert rejected.error.payload == "unauthorized"


def test_outcomes_are_mutually_exclusive() -> None:
    classifier = ResponseClassifier()
    outcomes = [
        Outcome.success("payload"),
        classifier.classify_exception(_CHAT, APIConnectionError(request=_REQUEST)),
        classifier.classify_exception(_CHAT, _status_error(503)),
        classifier.classify_completion(_CHAT, _completion()),
    ]

    kinds = [outcome.kind for outcome in outcomes]

    assert kinds == [None, FailureKind.TRANSPORT_ERROR, FailureKind.SERVICE_REJECTED, FailureKind.EMPTY_RESPONSE]
    assert [outcome.ok for outcome in outcomes] == [True, False, False, False]


def test_resolve_thread_content_selects_variant_by_tag() -> None:
    classifier = ResponseClassifier()
    text_block = SimpleNamespace(type="text", text=SimpleNamespace(value="hi"))
    image_block = SimpleNamespace(type="image_file", image_file=SimpleNamespace(file_id="file-1"))
    unknown_block = SimpleNamespace(type="refusal")

    assert classifier.resolve_thread_content([text_block]) == TextContent("hi")
    assert classifier.resolve_thread_content([unknown_block, image_block]) == ImageFileContent("file-1")
    assert classifier.resolve_thread_content([]) is None
    assert content_payload(TextContent("hi")) == "hi"
    assert content_payload(ImageFileContent("file-1")) == "file-1"


def test_stream_error_event_classifies_as_service_rejected() -> None:
    body = {"message": "The server had an error", "type": "server_error"}

    outcome = ResponseClassifier().classify_exception(_CHAT, APIError("server_error", _REQUEST, body=body))

    assert outcome.kind is FailureKind.SERVICE_REJECTED
    assert outcome.error.status_code is None
    assert outcome.error.payload == body


def test_connection_errors_stay_transport_errors_despite_api_error_base() -> None:
    assert issubclass(APIConnectionError, APIError)

    outcome = ResponseClassifier().classify_exception(_CHAT, APITimeoutError(request=_REQUEST))

    assert outcome.kind is FailureKind.TRANSPORT_ERROR


def test_unparseable_success_body_classifies_as_empty_response() -> None:
    response = httpx.Response(200, request=_REQUEST, text="<html>")
    exc = APIResponseValidationError(response=response, body="<html>")

    outcome = ResponseClassifier().classify_exception(_CHAT, exc)

    assert outcome.kind is FailureKind.EMPTY_RESPONSE
    assert isinstance(outcome.error, EmptyResponse)
    assert outcome.error.details == {"status_code": 200}

from __future__ import annotations

import json

import httpx
import pytest

from healforge.ai.base import AIRequest
from healforge.ai.openai_compat import OpenAICompatGateway


def _gateway(handler, **kwargs) -> OpenAICompatGateway:
    return OpenAICompatGateway(
        base_url=kwargs.pop("base_url", "https://llm.example.com/v1"),
        api_key="sk-secret123",
        model="gpt-test",
        transport=httpx.MockTransport(handler),
        backoff_seconds=0,
        **kwargs,
    )


def test_complete_sends_operation_header_and_counts_cost():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": '{"suggestions": []}'}}],
                "usage": {"total_tokens": 1500},
            },
        )

    gateway = _gateway(handler, cost_per_1k_tokens=0.002, extra_headers={"X-Team": "qa"})
    response = gateway.complete(
        AIRequest(content="find a locator", operation="LOCATOR_DISCOVERY", system_prompt="be brief")
    )

    assert response.success is True
    assert response.content == '{"suggestions": []}'
    assert response.tokens_used == 1500
    assert response.cost == 0.003
    (request,) = requests
    assert request.url == httpx.URL("https://llm.example.com/v1/chat/completions")
    assert request.headers["X-Operation-Type"] == "LOCATOR_DISCOVERY"
    assert request.headers["Authorization"] == "Bearer sk-secret123"
    assert request.headers["X-Team"] == "qa"
    body = json.loads(request.content.decode())
    assert body["model"] == "gpt-test"
    assert [message["role"] for message in body["messages"]] == ["system", "user"]


def test_retries_server_errors_then_succeeds():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503, text="overloaded")
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    response = _gateway(handler).complete(AIRequest(content="hi", operation="FIX_SUGGESTION"))
    assert response.success is True
    assert response.content == "ok"
    assert len(calls) == 3


def test_gives_up_after_three_attempts_and_redacts_key():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(429, text="rate limited for sk-secret123")

    response = _gateway(handler).complete(AIRequest(content="hi", operation="FAILURE_ANALYSIS"))
    assert response.success is False
    assert len(calls) == 3
    assert "sk-secret123" not in (response.error or "")
    assert "429" in (response.error or "")


def test_client_errors_are_not_successful():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "bad key"})

    response = _gateway(handler).complete(AIRequest(content="hi", operation="FAILURE_ANALYSIS"))
    assert response.success is False


@pytest.mark.parametrize(
    ("base_url", "expected"),
    [
        ("http://host:8000", "http://host:8000/v1/chat/completions"),
        ("host:8000/api/v1/", "http://host:8000/api/v1/chat/completions"),
        ("https://llm.example.com/v1/chat/completions", "https://llm.example.com/v1/chat/completions"),
    ],
)
def test_base_url_variants(base_url: str, expected: str):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    _gateway(handler, base_url=base_url).complete(AIRequest(content="hi", operation="X"))
    assert requests[0].url == httpx.URL(expected)

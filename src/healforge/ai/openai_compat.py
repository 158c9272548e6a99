"""OpenAI-compatible AI gateway over httpx."""

from __future__ import annotations

import json
import time
from typing import Any
from urllib.parse import urlparse, urlunparse

import httpx

from healforge.ai.base import AIGateway, AIRequest, AIResponse
from healforge.errors import AIGatewayError
from healforge.util.logging import get_logger, redact

logger = get_logger(__name__)


class OpenAICompatGateway(AIGateway):
    """Chat-completions client returning plain content plus token accounting."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout_seconds: int = 60,
        max_response_bytes: int = 2_000_000,
        extra_headers: dict[str, str] | None = None,
        cost_per_1k_tokens: float = 0.0,
        transport: httpx.BaseTransport | None = None,
        backoff_seconds: float = 1.0,
    ) -> None:
        normalized = base_url.strip()
        if not normalized.startswith(("http://", "https://")):
            normalized = f"http://{normalized}"
        self.base_url = normalized.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_response_bytes = max_response_bytes
        self.extra_headers = extra_headers or {}
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.transport = transport
        self.backoff_seconds = backoff_seconds

    def _build_url(self) -> str:
        parsed = urlparse(self.base_url)
        path = (parsed.path or "").rstrip("/")
        if not path:
            path = "/v1"
        if not path.endswith("/chat/completions"):
            path = f"{path}/chat/completions"
        return urlunparse(parsed._replace(path=path, params="", query="", fragment=""))

    def _messages(self, request: AIRequest) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.content})
        return messages

    def _post(self, request: AIRequest) -> dict[str, Any]:
        url = self._build_url()
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "X-Operation-Type": request.operation,
            **self.extra_headers,
        }
        payload = {"model": self.model, "messages": self._messages(request)}
        timeout = httpx.Timeout(self.timeout_seconds)

        last_error: Exception | None = None
        for attempt in range(3):
            try:
                with httpx.Client(timeout=timeout, transport=self.transport) as client:
                    response = client.post(url, headers=headers, json=payload)
                if response.status_code == 429 or response.status_code >= 500:
                    raise AIGatewayError(
                        f"Retryable error {response.status_code}: {response.text[:200]}"
                    )
                response.raise_for_status()
                if len(response.content) > self.max_response_bytes:
                    raise AIGatewayError("Response too large")
                try:
                    return response.json()
                except json.JSONDecodeError as exc:
                    raise AIGatewayError("Malformed JSON response") from exc
            except (httpx.HTTPError, AIGatewayError) as exc:
                last_error = exc
                logger.warning(
                    "AI request %s attempt %d failed: %s",
                    request.operation,
                    attempt + 1,
                    redact(str(exc), [self.api_key]),
                )
                if attempt == 2:
                    break
                time.sleep(self.backoff_seconds * 2**attempt)
        raise AIGatewayError(f"AI request failed: {last_error}")

    def complete(self, request: AIRequest) -> AIResponse:
        try:
            data = self._post(request)
        except AIGatewayError as exc:
            return AIResponse(success=False, error=redact(str(exc), [self.api_key]))
        choice = (data.get("choices") or [{}])[0]
        content = choice.get("message", {}).get("content")
        tokens = int((data.get("usage") or {}).get("total_tokens") or 0)
        return AIResponse(
            success=True,
            content=content if isinstance(content, str) else "",
            tokens_used=tokens,
            cost=round(tokens / 1000 * self.cost_per_1k_tokens, 6),
        )

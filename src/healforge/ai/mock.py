"""Scripted AI gateway for offline runs and tests."""

from __future__ import annotations

from healforge.ai.base import AIGateway, AIRequest, AIResponse


class MockAIGateway(AIGateway):
    """Returns scripted responses in order, then a fixed fallback."""

    def __init__(
        self,
        scripted: list[AIResponse | str] | None = None,
        fallback: str = '{"suggestions": []}',
    ) -> None:
        self._scripted = list(scripted or [])
        self.fallback = fallback
        self.requests: list[AIRequest] = []

    def complete(self, request: AIRequest) -> AIResponse:
        self.requests.append(request)
        if self._scripted:
            item = self._scripted.pop(0)
            if isinstance(item, AIResponse):
                return item
            return AIResponse(success=True, content=item)
        return AIResponse(success=True, content=self.fallback)

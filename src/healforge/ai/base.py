"""AI gateway interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel


class AIRequest(BaseModel):
    content: str
    operation: str
    system_prompt: str | None = None


class AIResponse(BaseModel):
    success: bool
    content: str = ""
    error: str | None = None
    tokens_used: int = 0
    cost: float = 0.0


class AIGateway(ABC):
    """Content in, content out. Rate limiting and sanitization live behind it."""

    @abstractmethod
    def complete(self, request: AIRequest) -> AIResponse:
        raise NotImplementedError

#!/usr/bin/env python3
"""Vendor-agnostic LLM provider base classes and data types.

Defines the universal request/response format and the abstract provider
interface used by the router. Every provider offers a blocking ``invoke``
and an asyncio API (``ainvoke`` / ``astream``); the async defaults fall
back to ``invoke`` so a provider only has to override what its SDK
supports natively.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional


@dataclass
class LLMRequest:
    """Vendor-agnostic LLM invocation request."""
    messages: List[Dict[str, Any]] = field(default_factory=list)
    system_prompt: str = ""
    model: str = ""
    max_tokens: int = 2048
    temperature: float = 0.3
    stop_sequences: Optional[List[str]] = None
    timeout: Optional[float] = None
    session_id: str = ""


@dataclass
class LLMResponse:
    """Vendor-agnostic LLM invocation response."""
    content: str = ""
    model_id: str = ""
    provider: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    stop_reason: str = ""


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier."""

    @abstractmethod
    def invoke(self, request: LLMRequest, model_id: str, model_config: dict) -> LLMResponse:
        """Invoke the LLM synchronously."""

    async def ainvoke(self, request: LLMRequest, model_id: str,
                      model_config: dict) -> LLMResponse:
        """Invoke from the event loop. Default: runs invoke() off-loop."""
        return await asyncio.to_thread(self.invoke, request, model_id, model_config)

    async def astream(self, request: LLMRequest, model_id: str,
                      model_config: dict) -> AsyncIterator[dict]:
        """Stream from the event loop. Default: falls back to ainvoke()."""
        resp = await self.ainvoke(request, model_id, model_config)
        yield {"type": "text", "text": resp.content}
        yield {"type": "message_stop", "model_id": resp.model_id}

    @abstractmethod
    def check_availability(self, model_id: str) -> bool:
        """Check if a specific model is available."""

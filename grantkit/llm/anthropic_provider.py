#!/usr/bin/env python3
"""Anthropic Messages API provider.

Default backend for section generation and checklist evaluation. Uses the
official SDK's sync client for ``invoke`` and the async client for
``ainvoke`` / ``astream`` so streaming stays on the event loop.

Sampling parameters are left to the API defaults: current SDK releases
reject ``temperature`` on ``messages.create`` / ``messages.stream``.
"""

import logging
import time
from typing import AsyncIterator, Optional

import anthropic

from grantkit.llm.provider import LLMProvider, LLMRequest, LLMResponse

logger = logging.getLogger("grantkit.llm.anthropic")


class AnthropicLLMProvider(LLMProvider):
    """Provider for the Anthropic Messages API."""

    def __init__(self, api_key: str = "", base_url: Optional[str] = None):
        self._api_key = api_key
        self._base_url = base_url or None
        self._client = None
        self._async_client = None

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _get_client(self):
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self._api_key, base_url=self._base_url)
        return self._client

    def _get_async_client(self):
        if self._async_client is None:
            self._async_client = anthropic.AsyncAnthropic(
                api_key=self._api_key, base_url=self._base_url,
            )
        return self._async_client

    def _params(self, request: LLMRequest, model_id: str) -> dict:
        messages = list(request.messages) or [{"role": "user", "content": "Hello"}]
        params = {
            "model": model_id,
            "max_tokens": request.max_tokens,
            "messages": messages,
        }
        if request.system_prompt:
            params["system"] = request.system_prompt
        if request.stop_sequences:
            params["stop_sequences"] = request.stop_sequences
        if request.timeout:
            params["timeout"] = request.timeout
        return params

    def _to_response(self, msg, model_id: str, start: float) -> LLMResponse:
        text = "".join(
            block.text for block in msg.content if getattr(block, "type", "") == "text"
        )
        usage = getattr(msg, "usage", None)
        return LLMResponse(
            content=text,
            model_id=model_id,
            provider="anthropic",
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            duration_ms=int((time.time() - start) * 1000),
            stop_reason=str(getattr(msg, "stop_reason", "") or ""),
        )

    def invoke(self, request: LLMRequest, model_id: str, model_config: dict) -> LLMResponse:
        start = time.time()
        try:
            msg = self._get_client().messages.create(**self._params(request, model_id))
        except anthropic.APIError as exc:
            raise RuntimeError(f"anthropic invocation failed: {exc}") from exc
        return self._to_response(msg, model_id, start)

    async def ainvoke(self, request: LLMRequest, model_id: str,
                      model_config: dict) -> LLMResponse:
        start = time.time()
        try:
            msg = await self._get_async_client().messages.create(
                **self._params(request, model_id)
            )
        except anthropic.APIError as exc:
            raise RuntimeError(f"anthropic invocation failed: {exc}") from exc
        return self._to_response(msg, model_id, start)

    async def astream(self, request: LLMRequest, model_id: str,
                      model_config: dict) -> AsyncIterator[dict]:
        client = self._get_async_client()
        async with client.messages.stream(**self._params(request, model_id)) as stream:
            async for text in stream.text_stream:
                yield {"type": "text", "text": text}
        yield {"type": "message_stop", "model_id": model_id}

    def check_availability(self, model_id: str) -> bool:
        return bool(self._api_key) and bool(model_id)

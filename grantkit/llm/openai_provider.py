#!/usr/bin/env python3
"""OpenAI-compatible LLM provider.

Supports any OpenAI-compatible API: OpenAI, Ollama, vLLM, LM Studio, etc.
Used as the fallback tier behind Anthropic and for local inference.
"""

import logging
import time
from typing import AsyncIterator

from openai import AsyncOpenAI, OpenAI

from grantkit.llm.provider import LLMProvider, LLMRequest, LLMResponse

logger = logging.getLogger("grantkit.llm.openai")


class OpenAICompatibleProvider(LLMProvider):
    """Provider for OpenAI-compatible REST APIs (OpenAI, Ollama, vLLM, etc.)."""

    def __init__(self, api_key: str = "ollama", base_url: str = "http://localhost:11434/v1",
                 provider_label: str = "openai_compatible"):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._label = provider_label
        self._client = OpenAI(api_key=self._api_key, base_url=self._base_url)
        self._async_client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)

    @property
    def provider_name(self) -> str:
        return self._label

    def _messages(self, request: LLMRequest) -> list:
        messages = list(request.messages)
        if not messages:
            messages = [{"role": "user", "content": "Hello"}]
        # Prepend system prompt if present
        if request.system_prompt and not any(m.get("role") == "system" for m in messages):
            messages = [{"role": "system", "content": request.system_prompt}] + messages
        return messages

    def _kwargs(self, request: LLMRequest, model_id: str) -> dict:
        kwargs = {
            "model": model_id,
            "messages": self._messages(request),
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if request.stop_sequences:
            kwargs["stop"] = request.stop_sequences
        if request.timeout:
            kwargs["timeout"] = request.timeout
        return kwargs

    def _to_response(self, resp, model_id: str, start: float) -> LLMResponse:
        return LLMResponse(
            content=resp.choices[0].message.content or "",
            model_id=model_id,
            provider=self._label,
            input_tokens=getattr(resp.usage, "prompt_tokens", 0),
            output_tokens=getattr(resp.usage, "completion_tokens", 0),
            duration_ms=int((time.time() - start) * 1000),
            stop_reason=str(resp.choices[0].finish_reason),
        )

    def invoke(self, request: LLMRequest, model_id: str, model_config: dict) -> LLMResponse:
        start = time.time()
        try:
            resp = self._client.chat.completions.create(**self._kwargs(request, model_id))
        except Exception as exc:
            raise RuntimeError(f"{self._label} invocation failed: {exc}") from exc
        return self._to_response(resp, model_id, start)

    async def ainvoke(self, request: LLMRequest, model_id: str,
                      model_config: dict) -> LLMResponse:
        start = time.time()
        try:
            resp = await self._async_client.chat.completions.create(
                **self._kwargs(request, model_id)
            )
        except Exception as exc:
            raise RuntimeError(f"{self._label} invocation failed: {exc}") from exc
        return self._to_response(resp, model_id, start)

    async def astream(self, request: LLMRequest, model_id: str,
                      model_config: dict) -> AsyncIterator[dict]:
        stream = await self._async_client.chat.completions.create(
            stream=True, **self._kwargs(request, model_id)
        )
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield {"type": "text", "text": delta.content}
        finally:
            await stream.close()
        yield {"type": "message_stop", "model_id": model_id}

    def check_availability(self, model_id: str) -> bool:
        try:
            models = self._client.with_options(timeout=5.0).models.list()
            ids = [m.id for m in models.data]
            return model_id in ids
        except Exception:
            return False

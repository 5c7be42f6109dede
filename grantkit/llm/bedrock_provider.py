#!/usr/bin/env python3
"""Bedrock LLM Provider — Anthropic models hosted on AWS Bedrock.

boto3 has no asyncio client, so ``ainvoke`` / ``astream`` use the base
class fallback (blocking call off the event loop, single text event).
"""

import json
import logging
import time

import boto3

from grantkit.llm.provider import LLMProvider, LLMRequest, LLMResponse

logger = logging.getLogger("grantkit.llm.bedrock")

ANTHROPIC_VERSION = "bedrock-2023-05-31"


class BedrockLLMProvider(LLMProvider):
    """AWS Bedrock LLM provider."""

    def __init__(self, region: str = "ap-northeast-2"):
        self._region = region
        self._client = None

    @property
    def provider_name(self) -> str:
        return "bedrock"

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client("bedrock-runtime", region_name=self._region)
        return self._client

    @staticmethod
    def _body(request: LLMRequest) -> str:
        messages = []
        for msg in request.messages:
            content = msg.get("content", "")
            if isinstance(content, str):
                content = [{"type": "text", "text": content}]
            messages.append({"role": msg.get("role", "user"), "content": content})

        body = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": request.max_tokens,
            "messages": messages,
        }
        if request.system_prompt:
            body["system"] = request.system_prompt
        if request.stop_sequences:
            body["stop_sequences"] = request.stop_sequences
        return json.dumps(body)

    def invoke(self, request: LLMRequest, model_id: str, model_config: dict) -> LLMResponse:
        start = time.time()
        response = self._get_client().invoke_model(
            modelId=model_id,
            contentType="application/json",
            accept="application/json",
            body=self._body(request),
        )
        result = json.loads(response["body"].read())
        text = "".join(
            block.get("text", "") for block in result.get("content", [])
            if block.get("type") == "text"
        )
        usage = result.get("usage", {})
        return LLMResponse(
            content=text,
            model_id=model_id,
            provider="bedrock",
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            duration_ms=int((time.time() - start) * 1000),
            stop_reason=result.get("stop_reason", ""),
        )

    def check_availability(self, model_id: str) -> bool:
        try:
            self._get_client()
            return True
        except Exception:
            return False

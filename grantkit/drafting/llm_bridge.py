#!/usr/bin/env python3
"""LLM bridge: async access to the GrantKit LLM router.

Two calls are exposed to the rest of the drafting engine:
  complete() — one-shot completion (checklist evaluation)
  stream()   — ordered text fragments (section generation)

Both are bounded by ``settings.request_timeout_seconds`` from
llm_config.yaml. Any backend failure, including the timeout, surfaces as
LLMUnavailableError; the bridge itself never retries. SHA-256 hashes of
prompts/responses go to the audit trail.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from grantkit.audit.audit_logger import log_event, sha256
from grantkit.llm.provider import LLMRequest

logger = logging.getLogger("grantkit.drafting.llm_bridge")

DEFAULT_TIMEOUT_SECONDS = 30.0

# Lazy to keep the router (and its SDK imports) off the import path
_router = None


class LLMUnavailableError(RuntimeError):
    """Raised when all LLM providers fail or the router is unavailable."""


class LLMTimeoutError(LLMUnavailableError):
    """Raised when a call exceeds the configured request ceiling."""


def _get_router():
    global _router
    if _router is None:
        try:
            from grantkit.llm.router import LLMRouter
            _router = LLMRouter()
        except Exception as exc:
            logger.error("LLM router could not be loaded: %s", exc)
            _router = None
    return _router


def set_router(router) -> None:
    """Install the router used by complete()/stream(); None resets to lazy."""
    global _router
    _router = router


def configured_functions() -> list:
    """Function names with a routing chain, [] when no router loads."""
    router = _get_router()
    return list(router.functions) if router is not None else []


def request_timeout() -> float:
    router = _get_router()
    if router is None:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        return float(router.get_setting("request_timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
    except (TypeError, ValueError):
        return DEFAULT_TIMEOUT_SECONDS


def _log_telemetry(function: str, prompt: str, response: str,
                   model_id: str, provider: str,
                   input_tokens: int = 0, output_tokens: int = 0,
                   session_id: str = "") -> None:
    log_event(
        "llm.call", "llm-bridge", function, session_id=session_id,
        metadata={
            "model_id": model_id,
            "provider": provider,
            "prompt_hash": sha256(prompt),
            "response_hash": sha256(response),
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
        },
    )


def _build_request(prompt: str, system_prompt: str, max_tokens: int,
                   timeout: float, session_id: str) -> LLMRequest:
    return LLMRequest(
        messages=[{"role": "user", "content": prompt}],
        system_prompt=system_prompt,
        max_tokens=max_tokens,
        timeout=timeout,
        session_id=session_id,
    )


async def complete(prompt: str, function: str = "checklist_evaluation",
                   system_prompt: str = "", max_tokens: int = 1024,
                   session_id: str = "") -> str:
    """Call the router once. Returns response text or raises LLMUnavailableError."""
    router = _get_router()
    if router is None:
        raise LLMUnavailableError("LLM router could not be initialised.")

    timeout = request_timeout()
    request = _build_request(prompt, system_prompt, max_tokens, timeout, session_id)
    try:
        response = await asyncio.wait_for(router.ainvoke(function, request), timeout)
    except asyncio.TimeoutError as exc:
        logger.error("LLM call timed out after %.0fs for function=%s", timeout, function)
        raise LLMTimeoutError(f"No response within {timeout:.0f}s") from exc
    except Exception as exc:
        logger.error("LLM invocation failed for function=%s: %s", function, exc, exc_info=True)
        raise LLMUnavailableError(str(exc)) from exc

    _log_telemetry(
        function=function,
        prompt=prompt,
        response=response.content,
        model_id=response.model_id,
        provider=response.provider,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        session_id=session_id,
    )
    return response.content


async def stream(prompt: str, function: str = "section_generation",
                 system_prompt: str = "", max_tokens: int = 2048,
                 session_id: str = "") -> AsyncIterator[str]:
    """Yield text fragments in arrival order.

    The whole stream shares one deadline. Closing the generator early
    (``aclose()`` or task cancellation) closes the provider stream too.
    """
    router = _get_router()
    if router is None:
        raise LLMUnavailableError("LLM router could not be initialised.")

    timeout = request_timeout()
    request = _build_request(prompt, system_prompt, max_tokens, timeout, session_id)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    events = router.astream(function, request)
    parts = []
    model_id: Optional[str] = None
    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise LLMTimeoutError(f"Stream exceeded {timeout:.0f}s")
            try:
                event = await asyncio.wait_for(events.__anext__(), remaining)
            except StopAsyncIteration:
                break
            except asyncio.TimeoutError as exc:
                raise LLMTimeoutError(f"Stream exceeded {timeout:.0f}s") from exc
            except Exception as exc:
                logger.error("LLM stream failed for function=%s after %d fragments: %s",
                             function, len(parts), exc)
                raise LLMUnavailableError(str(exc)) from exc

            if event.get("type") == "text" and event.get("text"):
                parts.append(event["text"])
                yield event["text"]
            elif event.get("type") == "message_stop":
                model_id = event.get("model_id")
    finally:
        await events.aclose()

    _log_telemetry(
        function=function,
        prompt=prompt,
        response="".join(parts),
        model_id=model_id or "unknown",
        provider="stream",
        session_id=session_id,
    )

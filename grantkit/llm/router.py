#!/usr/bin/env python3
"""Config-driven LLM router for GrantKit.

Reads args/llm_config.yaml and resolves each function (section_generation,
checklist_evaluation) to a provider + model via a fallback chain. Checks
provider availability and caches results.
"""

import asyncio
import logging
import os
import re
import time
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple

import yaml

from grantkit.llm.provider import LLMProvider, LLMRequest, LLMResponse

logger = logging.getLogger("grantkit.llm.router")

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = Path(os.environ.get(
    "GRANTKIT_LLM_CONFIG", str(BASE_DIR / "args" / "llm_config.yaml")
))


def _expand_env(value):
    """Expand ${VAR:-default} patterns in string values."""
    if not isinstance(value, str):
        return value
    pattern = r'\$\{([^}]+)\}'
    def replacer(match):
        expr = match.group(1)
        if ":-" in expr:
            var, default = expr.split(":-", 1)
            return os.environ.get(var, default)
        return os.environ.get(expr, match.group(0))
    return re.sub(pattern, replacer, value)


class LLMRouter:
    """Config-driven router mapping GrantKit functions to LLM providers."""

    def __init__(self, config_path=None, config: Optional[dict] = None):
        self._config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._config: Dict = {}
        self._providers: Dict[str, LLMProvider] = {}
        self._availability_cache: Dict[str, bool] = {}
        self._availability_cache_time: float = 0.0
        self._cache_ttl: float = 1800.0
        if config is not None:
            self._config = config
            self._apply_settings()
        else:
            self._load_config()

    def _load_config(self):
        """Load and parse llm_config.yaml."""
        if not self._config_path.exists():
            logger.warning("LLM config not found at %s, using empty config", self._config_path)
            self._config = {}
            return
        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                self._config = yaml.safe_load(f) or {}
            self._apply_settings()
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Failed to load LLM config: %s", exc)
            self._config = {}

    def _apply_settings(self):
        self._cache_ttl = float(self.get_setting("availability_cache_ttl_seconds", 1800))

    def get_setting(self, name: str, default=None):
        """Return a value from the ``settings`` block, env-expanded."""
        value = self._config.get("settings", {}).get(name, default)
        return _expand_env(value)

    @property
    def functions(self) -> List[str]:
        return sorted(self._config.get("routing", {}).keys())

    def register_provider(self, provider_name: str, provider: LLMProvider) -> None:
        """Install a ready-made provider instance under ``provider_name``."""
        self._providers[provider_name] = provider

    def _get_provider(self, provider_name: str) -> Optional[LLMProvider]:
        """Get or create a provider instance by name."""
        if provider_name in self._providers:
            return self._providers[provider_name]

        provider_cfg = self._config.get("providers", {}).get(provider_name, {})
        if not provider_cfg:
            return None

        ptype = provider_cfg.get("type", "")
        instance = None

        try:
            if ptype == "anthropic":
                from grantkit.llm.anthropic_provider import AnthropicLLMProvider
                api_key_env = provider_cfg.get("api_key_env", "ANTHROPIC_API_KEY")
                api_key = os.environ.get(api_key_env, "")
                base_url = _expand_env(provider_cfg.get("base_url", "")) or None
                instance = AnthropicLLMProvider(api_key=api_key, base_url=base_url)

            elif ptype in ("openai", "openai_compatible"):
                from grantkit.llm.openai_provider import OpenAICompatibleProvider
                api_key = provider_cfg.get("api_key", "")
                if not api_key:
                    api_key_env = provider_cfg.get("api_key_env", "")
                    if api_key_env:
                        api_key = os.environ.get(api_key_env, "")
                base_url = _expand_env(provider_cfg.get("base_url", "https://api.openai.com/v1"))
                instance = OpenAICompatibleProvider(
                    api_key=api_key, base_url=base_url, provider_label=provider_name,
                )

            elif ptype == "ollama":
                from grantkit.llm.openai_provider import OpenAICompatibleProvider
                base_url = _expand_env(provider_cfg.get("base_url", "http://localhost:11434/v1"))
                instance = OpenAICompatibleProvider(
                    api_key="ollama", base_url=base_url, provider_label="ollama",
                )

            elif ptype == "bedrock":
                from grantkit.llm.bedrock_provider import BedrockLLMProvider
                region = _expand_env(provider_cfg.get("region", "ap-northeast-2"))
                instance = BedrockLLMProvider(region=region)

        except ImportError as exc:
            logger.warning("Could not import provider '%s': %s", provider_name, exc)
            return None
        except Exception as exc:
            logger.warning("Failed to create provider '%s': %s", provider_name, exc)
            return None

        if instance:
            self._providers[provider_name] = instance
        return instance

    def _get_model_config(self, model_name: str) -> dict:
        return self._config.get("models", {}).get(model_name, {})

    def _chain_for(self, function: str) -> List[str]:
        routing = self._config.get("routing", {})
        route = routing.get(function, routing.get("default", {}))
        return list(route.get("chain", []))

    def _resolve(self, model_name: str) -> Tuple[Optional[LLMProvider], str, dict]:
        model_cfg = self._get_model_config(model_name)
        if not model_cfg:
            return None, "", {}
        provider = self._get_provider(model_cfg.get("provider", ""))
        return provider, _expand_env(model_cfg.get("model_id", "")), model_cfg

    def _expire_availability(self) -> None:
        now = time.time()
        if (now - self._availability_cache_time) > self._cache_ttl:
            self._availability_cache = {}
            self._availability_cache_time = now

    def _check_model_available(self, model_name: str) -> bool:
        self._expire_availability()
        if model_name in self._availability_cache:
            return self._availability_cache[model_name]

        provider, model_id, model_cfg = self._resolve(model_name)
        if provider is None:
            self._availability_cache[model_name] = False
            return False

        try:
            available = bool(provider.check_availability(model_id))
        except Exception:
            available = False
        if not available:
            logger.info("Model %s reported unavailable, skipping for %.0fs",
                        model_name, self._cache_ttl)
        self._availability_cache[model_name] = available
        return available

    def _mark_unavailable(self, model_name: str) -> None:
        self._expire_availability()
        self._availability_cache[model_name] = False

    def _candidates(self, function: str) -> List[Tuple[str, LLMProvider, str, dict]]:
        """Resolvable models of the chain, unavailable ones skipped.

        Models probed or marked unavailable stay skipped for the cache TTL.
        When the whole chain is marked unavailable it is tried in order
        anyway, so one bad window cannot shut a function off.
        """
        resolved = []
        for model_name in self._chain_for(function):
            provider, model_id, model_cfg = self._resolve(model_name)
            if provider is None:
                continue
            resolved.append((model_name, provider, model_id, model_cfg))
        available = [c for c in resolved if self._check_model_available(c[0])]
        if resolved and not available:
            logger.warning("Every model for %s is marked unavailable, trying the full chain",
                           function)
            return resolved
        return available

    async def _acandidates(self, function: str):
        # Availability checks may block on the network
        return await asyncio.to_thread(self._candidates, function)

    def _apply_model_limits(self, request: LLMRequest, model_cfg: dict) -> None:
        cap = model_cfg.get("max_tokens")
        if cap:
            request.max_tokens = min(request.max_tokens, int(cap))

    def invoke(self, function: str, request: LLMRequest) -> LLMResponse:
        """Resolve provider for function and invoke with fallback."""
        chain = self._chain_for(function)
        last_error = None

        for model_name, provider, model_id, model_cfg in self._candidates(function):
            self._apply_model_limits(request, model_cfg)
            try:
                return provider.invoke(request, model_id, model_cfg)
            except Exception as exc:
                logger.warning(
                    "Provider %s failed for %s: %s, trying next",
                    provider.provider_name, function, exc,
                )
                last_error = exc
                self._mark_unavailable(model_name)

        raise RuntimeError(
            f"All providers in chain {chain} failed for function '{function}'. "
            f"Last error: {last_error}"
        )

    async def ainvoke(self, function: str, request: LLMRequest) -> LLMResponse:
        """Async counterpart of :meth:`invoke`, same fallback semantics."""
        chain = self._chain_for(function)
        last_error = None

        for model_name, provider, model_id, model_cfg in await self._acandidates(function):
            self._apply_model_limits(request, model_cfg)
            try:
                return await provider.ainvoke(request, model_id, model_cfg)
            except Exception as exc:
                logger.warning(
                    "Provider %s failed for %s: %s, trying next",
                    provider.provider_name, function, exc,
                )
                last_error = exc
                self._mark_unavailable(model_name)

        raise RuntimeError(
            f"All providers in chain {chain} failed for function '{function}'. "
            f"Last error: {last_error}"
        )

    async def astream(self, function: str, request: LLMRequest) -> AsyncIterator[dict]:
        """Stream events for ``function``.

        Falls back to the next model only while nothing has been emitted.
        Once the first text event is out, a failure propagates to the
        caller so partial output is never silently replayed from another
        model.
        """
        chain = self._chain_for(function)
        last_error = None

        for model_name, provider, model_id, model_cfg in await self._acandidates(function):
            self._apply_model_limits(request, model_cfg)
            emitted = False
            events = provider.astream(request, model_id, model_cfg)
            try:
                async for event in events:
                    if event.get("type") == "text":
                        emitted = True
                    yield event
                return
            except Exception as exc:
                if emitted:
                    raise
                logger.warning(
                    "Provider %s failed to start stream for %s: %s, trying next",
                    provider.provider_name, function, exc,
                )
                last_error = exc
                self._mark_unavailable(model_name)
            finally:
                await events.aclose()

        raise RuntimeError(
            f"All providers in chain {chain} failed for function '{function}'. "
            f"Last error: {last_error}"
        )

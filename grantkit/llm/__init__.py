"""LLM provider layer.

Modules:
    provider            — request/response dataclasses, abstract provider
    router              — llm_config.yaml driven routing with fallback chains
    anthropic_provider  — Anthropic Messages API
    openai_provider     — OpenAI-compatible APIs (OpenAI, Ollama, vLLM)
    bedrock_provider    — AWS Bedrock
"""

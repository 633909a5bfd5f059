"""
Models module for LLM client abstraction.

Provides a unified interface for the local Ollama HTTP API.
"""

from agri_buddy.models.llm_client import (
    LLMClient,
    LLMClientBase,
    LLMError,
    LLMResponse,
    Message,
    RateLimitedError,
)

__all__ = [
    "LLMClient",
    "LLMClientBase",
    "LLMError",
    "LLMResponse",
    "Message",
    "RateLimitedError",
]

"""LLM provider abstraction used by the session evaluator."""

from .base import Completion, LLMProvider
from .openai import OpenAIProvider

__all__ = [
    "Completion",
    "LLMProvider",
    "OpenAIProvider",
]

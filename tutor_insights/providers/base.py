"""Provider interface the session evaluator talks to."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class Completion:
    """One chat completion.

    Attributes:
        content: Assistant message text (empty when the provider sent none)
        model: Model the request named
        finish_reason: Provider stop reason, when reported
        usage: Token accounting as returned by the provider
    """

    content: str
    model: str
    finish_reason: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)


class LLMProvider(ABC):
    """A chat-completion backend able to judge a transcript."""

    name = "base"

    @abstractmethod
    def is_available(self) -> bool:
        """True when credentials are configured."""

    @abstractmethod
    def complete(
        self,
        prompt: str,
        *,
        model: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> Completion:
        """Send ``system`` and ``prompt`` as one exchange and return the reply.

        Transport and HTTP errors propagate; the evaluator owns retries.
        """

    def supports_json_mode(self) -> bool:
        return False

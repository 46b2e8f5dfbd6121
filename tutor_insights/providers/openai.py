"""Client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from .. import config
from .base import Completion, LLMProvider

LOGGER = logging.getLogger(__name__)

_ERROR_DETAIL_LIMIT = 500


class OpenAIProvider(LLMProvider):
    """Posts to ``{base_url}/chat/completions`` with a bearer API key.

    Any server speaking the OpenAI wire format works; point ``OPENAI_API_BASE``
    at it.
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key or config.OPENAI_API_KEY
        self.base_url = (base_url or config.OPENAI_API_BASE).rstrip("/")
        self.timeout = timeout if timeout is not None else config.OPENAI_TIMEOUT_SECONDS
        # One session per provider so batch runs reuse connections.
        self._http = session or requests.Session()

    def is_available(self) -> bool:
        if self.api_key:
            return True
        LOGGER.debug("OPENAI_API_KEY is empty; evaluation provider disabled")
        return False

    def supports_json_mode(self) -> bool:
        return True

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
        """Run one chat completion.

        Raises:
            requests.exceptions.HTTPError: Non-2xx reply; the message carries
                the start of the response body.
            requests.exceptions.RequestException: Connection or timeout errors.
        """
        messages: List[Dict[str, str]] = [{"role": "user", "content": prompt}]
        if system:
            messages.insert(0, {"role": "system", "content": system})

        body: Dict[str, Any] = {"model": model, "messages": messages}
        if temperature is not None:
            body["temperature"] = temperature
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        LOGGER.debug("POST %s/chat/completions (model=%s json_mode=%s)", self.base_url, model, json_mode)
        reply = self._http.post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json=body,
            timeout=self.timeout,
        )
        try:
            reply.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            raise requests.exceptions.HTTPError(
                f"{exc} Response: {reply.text.strip()[:_ERROR_DETAIL_LIMIT]}"
            ) from exc

        payload = reply.json()
        choice = (payload.get("choices") or [{}])[0] or {}
        content = (choice.get("message") or {}).get("content")
        finish_reason = choice.get("finish_reason")
        if not isinstance(content, str) or not content:
            LOGGER.warning("Completion for model %s came back empty (finish_reason=%s)", model, finish_reason)
            content = ""

        return Completion(
            content=content,
            model=model,
            finish_reason=finish_reason,
            usage=payload.get("usage") or {},
        )

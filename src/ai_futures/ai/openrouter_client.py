"""OpenRouter LLM client."""

from __future__ import annotations

import time
from typing import Any

import httpx

from ai_futures.config import Settings
from ai_futures.errors import LLMCallError
from ai_futures.utils.logging import get_logger, log_llm_call

_OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"


class OpenRouterClient:
    """Thin client for the OpenRouter chat completion endpoint.

    One request per call; a failed call is reported, never retried.
    """

    def __init__(self, settings: Settings, http_client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._http_client = http_client
        self._logger = get_logger("ai_futures.ai.openrouter_client")

    def call(self, system_prompt: str, user_prompt: str) -> str:
        """Send both prompts and return the assistant text."""
        started = time.perf_counter()
        try:
            content = self._request_completion(system_prompt, user_prompt)
        except LLMCallError as exc:
            log_llm_call(
                self._logger,
                model=self._settings.openrouter_model,
                success=False,
                latency_ms=(time.perf_counter() - started) * 1000,
                reason=str(exc),
            )
            raise

        log_llm_call(
            self._logger,
            model=self._settings.openrouter_model,
            success=True,
            latency_ms=(time.perf_counter() - started) * 1000,
            response_chars=len(content),
        )
        return content

    def _request_completion(self, system_prompt: str, user_prompt: str) -> str:
        if not self._settings.openrouter_api_key:
            raise LLMCallError("missing_openrouter_api_key")

        headers = {
            "Authorization": f"Bearer {self._settings.openrouter_api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self._settings.openrouter_model,
            "temperature": self._settings.openrouter_temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }

        try:
            if self._http_client is not None:
                response = self._http_client.post(_OPENROUTER_URL, headers=headers, json=payload)
                response.raise_for_status()
            else:
                with httpx.Client(timeout=self._settings.openrouter_timeout) as client:
                    response = client.post(_OPENROUTER_URL, headers=headers, json=payload)
                    response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise LLMCallError(f"openrouter_request_failed: {exc}") from exc
        except ValueError as exc:
            raise LLMCallError("openrouter_response_not_json") from exc

        content = _extract_message_content(body)
        if content is None:
            raise LLMCallError("openrouter_response_missing_content")
        return content


def _extract_message_content(payload: Any) -> str | None:
    """Read assistant content from an OpenRouter response payload."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str):
        return content
    return None

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from autopecas.ai.base import ProviderError
from autopecas.core.config import OPENAI_API_URL, OPENAI_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class OpenAIProvider:
    """Chat completions via HTTP, sem SDK."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = OPENAI_API_URL,
        timeout: float = OPENAI_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not api_key:
            raise ProviderError("OPENAI_API_KEY não configurada")
        self._api_key = api_key
        self._api_url = api_url
        self._timeout = timeout
        self._client = client

    def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        if self._client is not None:
            return self._client.post(self._api_url, json=payload, headers=headers, timeout=self._timeout)
        return httpx.post(self._api_url, json=payload, headers=headers, timeout=self._timeout)

    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        payload: dict[str, Any] = {"model": model, "messages": messages, "max_tokens": max_tokens}
        if temperature is not None:
            payload["temperature"] = temperature
            payload["presence_penalty"] = 0.1
            payload["frequency_penalty"] = 0.1
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            response = self._post(payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("[AI] openai status=%s", exc.response.status_code)
            raise ProviderError(f"http_status_{exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.warning("[AI] openai request failed: %s", exc.__class__.__name__)
            raise ProviderError(f"http_error: {exc.__class__.__name__}") from exc
        except ValueError as exc:
            raise ProviderError("invalid_json_body") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("unexpected_response_shape") from exc

        if not content or not str(content).strip():
            raise ProviderError("empty_response")
        return str(content)

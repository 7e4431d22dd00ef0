from __future__ import annotations

from typing import Optional, Protocol


class ProviderError(RuntimeError):
    """Falha do provedor de LLM (HTTP, timeout, resposta vazia)."""


class LLMProvider(Protocol):
    name: str

    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        ...

"""Assinante do lado cliente para a lista de mensagens de uma conversa.

O polling é a fonte de verdade: o cache só é trocado pelo resultado de um
fetch. Um evento ``new_message`` recebido por push apenas antecipa o
próximo tick; ele nunca é aplicado diretamente no cache. Assim quem só
faz polling converge para a mesma lista dentro de um intervalo.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterable, Awaitable, Callable, Mapping, Optional, Union

import httpx

logger = logging.getLogger(__name__)

MESSAGES_POLL_INTERVAL = 2.0
CONVERSATIONS_POLL_INTERVAL = 5.0

Frame = Union[str, bytes, Mapping[str, Any]]


class PollingSubscriber:
    def __init__(self, fetch: Callable[[], Awaitable[list[dict[str, Any]]]], interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._fetch = fetch
        self.interval = interval
        self.items: list[dict[str, Any]] = []
        self.ticks = 0
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def matches(self, event: Mapping[str, Any]) -> bool:
        return event.get("type") == "new_message"

    def notify(self, event: Mapping[str, Any]) -> bool:
        if not isinstance(event, Mapping) or not self.matches(event):
            return False
        self._wake.set()
        return True

    async def refresh(self) -> list[dict[str, Any]]:
        self.items = list(await self._fetch())
        self.ticks += 1
        return self.items

    async def _tick(self) -> None:
        try:
            await self.refresh()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Subscriber fetch failed; keeping cached list: %s", exc)

    async def run(self) -> None:
        while True:
            await self._tick()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def listen(self, frames: AsyncIterable[Frame]) -> int:
        """Consome frames do canal de push; frames malformados são ignorados."""
        accepted = 0
        async for frame in frames:
            event = _decode_frame(frame)
            if event is not None and self.notify(event):
                accepted += 1
        return accepted


class ConversationSubscriber(PollingSubscriber):
    def __init__(
        self,
        conversation_id: int,
        fetch: Callable[[int], Awaitable[list[dict[str, Any]]]],
        interval: float = MESSAGES_POLL_INTERVAL,
    ) -> None:
        self.conversation_id = conversation_id
        super().__init__(lambda: fetch(conversation_id), interval)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return self.items

    def matches(self, event: Mapping[str, Any]) -> bool:
        if not super().matches(event):
            return False
        data = event.get("data")
        if not isinstance(data, Mapping):
            return False
        return data.get("conversationId") == self.conversation_id


class ConversationListSubscriber(PollingSubscriber):
    def __init__(
        self,
        fetch: Callable[[], Awaitable[list[dict[str, Any]]]],
        interval: float = CONVERSATIONS_POLL_INTERVAL,
    ) -> None:
        super().__init__(fetch, interval)


def _decode_frame(frame: Frame) -> Optional[Mapping[str, Any]]:
    if isinstance(frame, Mapping):
        return frame
    try:
        payload = json.loads(frame)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed push frame")
        return None
    return payload if isinstance(payload, dict) else None


class HttpMessageFetcher:
    """Busca mensagens/conversas na API HTTP usando httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        cookies: Optional[Mapping[str, str]] = None,
        timeout: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, cookies=dict(cookies or {}), timeout=timeout)

    async def __call__(self, conversation_id: int) -> list[dict[str, Any]]:
        response = await self._client.get(f"/api/conversations/{conversation_id}/messages")
        response.raise_for_status()
        return response.json()

    async def conversations(self) -> list[dict[str, Any]]:
        response = await self._client.get("/api/conversations")
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

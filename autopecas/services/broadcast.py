from __future__ import annotations

import json
import logging
from typing import Any

from starlette.websockets import WebSocket, WebSocketState

from autopecas.core.metrics import realtime_counters

logger = logging.getLogger(__name__)
REALTIME_PREFIX = "[REALTIME]"


def _is_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


def _is_closed(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.DISCONNECTED
        or websocket.application_state == WebSocketState.DISCONNECTED
    )


class BroadcastHub:
    """Registro das conexões /ws abertas neste processo.

    ``add`` e ``remove`` são os únicos pontos de mutação. O envio não tem
    fila nem replay: conexão que não está aberta é ignorada e conexão que
    falha no envio é descartada. Quem perder um evento recupera pelo polling.
    """

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def add(self, websocket: WebSocket) -> None:
        self._connections.add(websocket)
        logger.info("%s connection added", REALTIME_PREFIX, extra={"connections": self.connection_count})

    def remove(self, websocket: WebSocket) -> None:
        if websocket in self._connections:
            self._connections.discard(websocket)
            logger.info("%s connection removed", REALTIME_PREFIX, extra={"connections": self.connection_count})

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.add(websocket)

    async def broadcast(self, event_type: str, data: dict[str, Any]) -> int:
        frame = json.dumps({"type": event_type, "data": data}, ensure_ascii=False, default=str)
        sent = skipped = dropped = 0
        for websocket in list(self._connections):
            if not _is_open(websocket):
                skipped += 1
                if _is_closed(websocket):
                    self.remove(websocket)
                continue
            try:
                await websocket.send_text(frame)
                sent += 1
            except Exception:
                logger.warning("%s send failed; dropping connection", REALTIME_PREFIX, exc_info=True)
                self.remove(websocket)
                dropped += 1

        realtime_counters.record(sent=sent, skipped=skipped, dropped=dropped)
        logger.debug(
            "%s event=%s sent=%s skipped=%s dropped=%s",
            REALTIME_PREFIX,
            event_type,
            sent,
            skipped,
            dropped,
        )
        return sent

    async def broadcast_message(self, message: dict[str, Any]) -> int:
        return await self.broadcast("new_message", message)


broadcast_hub = BroadcastHub()

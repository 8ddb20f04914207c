"""WebSocket channel for live session events."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from firezap.api.auth import websocket_token_ok
from firezap.api.models import SubscriptionCommand
from firezap.domain.sessions import InvalidSessionIdError

if TYPE_CHECKING:
    from firezap.containers import AppContainer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"])


@dataclass(eq=False)
class WebSocketSubscriber:
    """Subscriber backed by an accepted WebSocket."""

    websocket: WebSocket

    async def send(self, message: dict[str, object]) -> None:
        """Send one JSON message."""
        await self.websocket.send_json(message)


@router.websocket("/ws")
async def subscriptions(websocket: WebSocket) -> None:
    """Let clients join and leave session groups."""
    if not websocket_token_ok(websocket):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    container: AppContainer = websocket.app.state.container
    await websocket.accept()
    subscriber = WebSocketSubscriber(websocket)
    logger.info("Subscriber connected")
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                command = SubscriptionCommand.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError):
                logger.warning("Ignoring malformed subscription command")
                await subscriber.send(
                    {"type": "error", "message": "malformed command"}
                )
                continue
            await _handle_command(container, subscriber, command)
    except WebSocketDisconnect:
        logger.info("Subscriber disconnected")
    finally:
        container.broadcaster.unsubscribe_all(subscriber)


async def _handle_command(
    container: AppContainer,
    subscriber: WebSocketSubscriber,
    command: SubscriptionCommand,
) -> None:
    if command.type == "ping":
        await subscriber.send({"type": "pong"})
        return
    if not command.session_id:
        await subscriber.send({"type": "error", "message": "sessionId is required"})
        return
    if command.type == "unsubscribe":
        container.broadcaster.unsubscribe(command.session_id, subscriber)
        return
    try:
        await container.registry.ensure(command.session_id)
    except InvalidSessionIdError as exc:
        await subscriber.send({"type": "error", "message": str(exc)})
        return
    await container.broadcaster.subscribe(command.session_id, subscriber)

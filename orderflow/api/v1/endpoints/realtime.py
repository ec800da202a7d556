"""WebSocket channel for live order status and courier location."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from orderflow.core.errors import NotAuthorized, NotFound, OrderflowError, ValidationError
from orderflow.core.security import Identity, decode_identity
from orderflow.db import session as db_session
from orderflow.models.order import Order
from orderflow.realtime.broadcaster import LocationBroadcaster
from orderflow.realtime.connection import QueuedWebSocketConnection
from orderflow.realtime.registry import NotAuthenticated, RegistryClosed
from orderflow.schemas.realtime import (
    EVENT_ERROR,
    AuthenticateMessage,
    PushLocationMessage,
    RealtimeEvent,
    RoomMessage,
)
from orderflow.services.notification_service import SmsNotifier
from orderflow.services.order_lifecycle import OrderLifecycle, can_view
from orderflow.utils.time import utcnow

logger = logging.getLogger(__name__)

router: APIRouter = APIRouter()


def _error_event(kind: str, detail: Any) -> dict[str, Any]:
    return RealtimeEvent(
        event=EVENT_ERROR,
        emitted_at=utcnow(),
        payload={"kind": kind, "detail": detail},
    ).model_dump(mode="json")


def _authorize_room(order_id: int, identity: Identity) -> None:
    """Room membership is limited to identities that may read the order."""
    with db_session.SessionLocal() as db:
        order = db.get(Order, order_id)
        if order is None or not can_view(order, identity):
            raise NotFound(f"Order {order_id} not found")


def _push_location(
    broadcaster: LocationBroadcaster,
    notifier: SmsNotifier,
    identity: Identity,
    message: PushLocationMessage,
) -> None:
    with db_session.SessionLocal() as db:
        OrderLifecycle(db, broadcaster, notifier).push_location(
            message.order_id, identity, message.latitude, message.longitude
        )


async def _dispatch(
    websocket: WebSocket,
    connection: QueuedWebSocketConnection,
    identity: Identity | None,
    message: Any,
) -> Identity | None:
    broadcaster: LocationBroadcaster = websocket.app.state.broadcaster
    message_type = message.get("type") if isinstance(message, dict) else None

    if message_type == "authenticate":
        auth = AuthenticateMessage.model_validate(message)
        resolved = decode_identity(auth.token)
        if auth.order_id is not None:
            await run_in_threadpool(_authorize_room, auth.order_id, resolved)
        broadcaster.authenticate(connection, resolved.id, resolved.role, auth.order_id)
        return resolved

    if identity is None:
        raise NotAuthorized("Authenticate before sending other messages")

    if message_type == "join_room":
        room = RoomMessage.model_validate(message)
        await run_in_threadpool(_authorize_room, room.order_id, identity)
        broadcaster.join_room(connection, room.order_id)
    elif message_type == "leave_room":
        room = RoomMessage.model_validate(message)
        broadcaster.leave_room(connection, room.order_id)
    elif message_type == "push_location":
        push = PushLocationMessage.model_validate(message)
        await run_in_threadpool(_push_location, broadcaster, websocket.app.state.notifier, identity, push)
    else:
        raise ValidationError(f"Unknown message type: {message_type}")
    return identity


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    await websocket.accept()
    broadcaster: LocationBroadcaster = websocket.app.state.broadcaster
    connection = QueuedWebSocketConnection(websocket)
    try:
        broadcaster.registry.register(connection)
    except RegistryClosed:
        await websocket.close(code=1012)
        return

    writer = asyncio.create_task(connection.run_writer())
    identity: Identity | None = None
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                identity = await _dispatch(websocket, connection, identity, json.loads(raw))
            except OrderflowError as exc:
                connection.send(_error_event(exc.kind, exc.reason))
            except PydanticValidationError as exc:
                connection.send(_error_event(ValidationError.kind, exc.errors(include_url=False, include_context=False)))
            except json.JSONDecodeError:
                connection.send(_error_event(ValidationError.kind, "Message must be a JSON object"))
            except NotAuthenticated as exc:
                connection.send(_error_event(NotAuthorized.kind, str(exc)))
    except (WebSocketDisconnect, ConnectionError):
        logger.debug("[REALTIME] Client %s disconnected", connection.connection_id)
    finally:
        broadcaster.disconnect(connection)
        connection.close()
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)

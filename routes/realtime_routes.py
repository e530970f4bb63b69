"""
WebSocket endpoint for live analytics.

Clients send JSON messages with a "type":

  subscribe:url / unsubscribe:url        {"type": ..., "short_code": "abc123"}
  subscribe:real-time / unsubscribe:real-time
  request:real-time:current              current platform snapshot
  request:url:current                    current counters of one link

Server frames are {"event", "topic", "data"}. A bad message is answered with
a "real-time:error" frame and the connection stays open.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from dependencies import get_broadcaster
from errors import AppError, ValidationError
from services.realtime import (
    ERROR_EVENT,
    GLOBAL_TOPIC,
    RealtimeBroadcaster,
    url_topic,
)
from shared.logging import get_logger, hash_ip, log_with_context

log = get_logger(__name__)

router = APIRouter(tags=["realtime"])


class WebSocketSubscriber:
    """Broadcaster-facing wrapper; serialises sends on one socket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._send_lock = asyncio.Lock()

    async def send_json(self, data: Any) -> None:
        async with self._send_lock:
            await self._websocket.send_json(data)


def _decode(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError("message is not valid JSON") from e


def _short_code_topic(message: dict[str, Any]) -> str:
    short_code = message.get("short_code")
    if not isinstance(short_code, str) or not short_code.strip():
        raise ValidationError("short_code is required", field="short_code")
    return url_topic(short_code.strip())


async def handle_message(
    broadcaster: RealtimeBroadcaster,
    subscriber: WebSocketSubscriber,
    message: Any,
) -> None:
    if not isinstance(message, dict):
        raise ValidationError("message must be a JSON object")
    msg_type = message.get("type")

    if msg_type == "subscribe:url":
        topic = _short_code_topic(message)
        # Unknown short codes fail here, before any subscription exists
        snapshot = await broadcaster.current_snapshot(topic)
        broadcaster.subscribe(subscriber, topic)
        await subscriber.send_json(snapshot)
    elif msg_type == "unsubscribe:url":
        broadcaster.unsubscribe(subscriber, _short_code_topic(message))
    elif msg_type == "subscribe:real-time":
        broadcaster.subscribe(subscriber, GLOBAL_TOPIC)
        await subscriber.send_json(await broadcaster.current_snapshot(GLOBAL_TOPIC))
    elif msg_type == "unsubscribe:real-time":
        broadcaster.unsubscribe(subscriber, GLOBAL_TOPIC)
    elif msg_type == "request:real-time:current":
        await subscriber.send_json(await broadcaster.current_snapshot(GLOBAL_TOPIC))
    elif msg_type == "request:url:current":
        await subscriber.send_json(
            await broadcaster.current_snapshot(_short_code_topic(message))
        )
    else:
        raise ValidationError(f"unknown message type: {msg_type!r}", field="type")


@router.websocket("/ws/analytics")
async def analytics_socket(
    websocket: WebSocket,
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
) -> None:
    await websocket.accept()
    subscriber = WebSocketSubscriber(websocket)
    client_host = websocket.client.host if websocket.client else None
    conn_log = log_with_context(log, client_ip_hash=hash_ip(client_host))
    conn_log.debug("realtime_client_connected")
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                await handle_message(broadcaster, subscriber, _decode(raw))
            except AppError as e:
                await subscriber.send_json(
                    {"event": ERROR_EVENT, "topic": None, "data": e.to_dict()}
                )
    except WebSocketDisconnect:
        conn_log.debug(
            "realtime_client_disconnected",
            topics=len(broadcaster.topics_for(subscriber)),
        )
    finally:
        broadcaster.disconnect(subscriber)

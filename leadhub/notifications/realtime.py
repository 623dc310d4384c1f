"""Socket.IO server: authenticated sessions, topic rooms and the emitter used by the dispatcher."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Any, Protocol

import anyio
import socketio
from sqlalchemy.orm import Session

from leadhub.core.auth import decode_access_token
from leadhub.core.config import get_settings
from leadhub.core.database import SessionLocal
from leadhub.crm.models import User


logger = logging.getLogger("leadhub.socket")

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=[get_settings().frontend_url],
    logger=False,
    engineio_logger=False,
)

_session_factory: Callable[[], Session] = SessionLocal


def set_session_factory(factory: Callable[[], Session]) -> None:
    global _session_factory
    _session_factory = factory


def user_room(user_id: uuid.UUID | str) -> str:
    return f"user:{user_id}"


def role_room(role: str) -> str:
    return f"role:{role}"


def lead_room(lead_id: uuid.UUID | str) -> str:
    return f"lead:{lead_id}"


ALL_USERS_ROOM = "all-users"


def authenticate_socket(token: str | None) -> dict[str, Any] | None:
    """Resolve a handshake token to the session identity of an active user."""

    if not token:
        return None
    user_id = decode_access_token(token)
    if user_id is None:
        return None

    session = _session_factory()
    try:
        user = session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return {"user_id": str(user.id), "email": user.email, "role": user.role}
    finally:
        session.close()


@sio.event
async def connect(sid: str, environ: dict[str, Any], auth: dict[str, Any] | None = None) -> None:
    token = auth.get("token") if isinstance(auth, dict) else None
    identity = await anyio.to_thread.run_sync(authenticate_socket, token)
    if identity is None:
        logger.warning("socket.rejected", extra={"sid": sid})
        raise socketio.exceptions.ConnectionRefusedError("Authentication error")

    await sio.save_session(sid, identity)
    await sio.enter_room(sid, user_room(identity["user_id"]))
    await sio.enter_room(sid, role_room(identity["role"]))
    await sio.enter_room(sid, ALL_USERS_ROOM)
    logger.info("socket.connected", extra={"sid": sid, "user_id": identity["user_id"]})


@sio.event
async def disconnect(sid: str, *args: Any) -> None:
    logger.info("socket.disconnected", extra={"sid": sid})


@sio.on("join:lead")
async def join_lead(sid: str, lead_id: str) -> None:
    await sio.enter_room(sid, lead_room(lead_id))
    logger.info("socket.joined_lead", extra={"sid": sid, "lead_id": lead_id})


@sio.on("leave:lead")
async def leave_lead(sid: str, lead_id: str) -> None:
    await sio.leave_room(sid, lead_room(lead_id))
    logger.info("socket.left_lead", extra={"sid": sid, "lead_id": lead_id})


class Emitter(Protocol):
    def emit(self, event_name: str, payload: dict[str, Any]) -> None: ...


class SocketIOEmitter:
    """Broadcasts to every connected session from a worker thread of the running event loop."""

    def __init__(self, server: socketio.AsyncServer) -> None:
        self._server = server

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        anyio.from_thread.run(self._broadcast, event_name, payload)

    async def _broadcast(self, event_name: str, payload: dict[str, Any]) -> None:
        await self._server.emit(event_name, payload)

"""Global Socket.IO server and the publish channel for lifecycle events.

Connection, session and room management belong to python-socketio; this
module only owns the server instance and the sync-friendly publish helpers.

Subject convention:
- sanitized envelopes: ``<singular-model-name>:<action>`` with ``data`` as
  the payload (e.g. ``article:update``)
- deletes: ``<singular-model-name>:delete`` with ``{"id", "documentId"}``
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING
from typing import Any

import socketio
from asgiref.sync import async_to_sync
from django.conf import settings

from livesync.lifecycles import sanitize

if TYPE_CHECKING:  # import for type checking only
    from livesync.lifecycles.events import Envelope

logger = logging.getLogger(__name__)


sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=getattr(settings, "REALTIME_CORS_ALLOWED_ORIGINS", "*"),
    logger=False,
    engineio_logger=False,
)


_server_loop: asyncio.AbstractEventLoop | None = None


def bind_server_loop() -> None:
    """Remember the event loop ``sio`` runs on.

    Called from the ASGI lifespan startup (and again on each connect), so
    deferred tasks scheduled from Django's sync threads can be handed to it.
    """

    global _server_loop  # noqa: PLW0603
    _server_loop = asyncio.get_running_loop()


def get_server_loop() -> asyncio.AbstractEventLoop | None:
    loop = _server_loop
    if loop is None or loop.is_closed() or not loop.is_running():
        return None
    return loop


@sio.event
async def connect(sid: str, environ: dict[str, Any], auth: Any | None = None):
    bind_server_loop()
    logger.debug("Socket.IO client connected: %s", sid)


@sio.event
async def disconnect(sid: str):
    _ = sid


def subject_for(singular_name: str, action: str) -> str:
    return f"{singular_name}:{action}"


def emit_event_to_room(room: str | None, event: str, payload: Any) -> None:
    """Emit an event from sync Django code.

    ``room=None`` broadcasts to every connected client. If nobody is
    connected, this is effectively a no-op.
    """

    async_to_sync(sio.emit)(event, payload, room=room)


class SocketIOChannel:
    """Channel the emission coordinator publishes through.

    Every entry point that carries entity data runs it through the
    sanitizer first; ``publish`` is the only unsanitized path and callers
    must hand it data that already passed one of the others.
    """

    def __init__(self, room: str | None = None) -> None:
        self.room = room

    def publish(self, subject: str, payload: Any) -> None:
        emit_event_to_room(self.room, subject, payload)

    def publish_raw(self, subject: str, data: Any) -> None:
        """Publish without schema context (manual sensitive-field removal only)."""

        self.publish(subject, sanitize.sanitize_raw(data))

    def publish_sanitized(self, envelope: Envelope) -> None:
        """Publish an envelope after schema-aware sanitization."""

        data = sanitize.output(envelope.data, schema=envelope.schema)
        subject = subject_for(envelope.schema["singularName"], envelope.event)
        self.publish(subject, data)

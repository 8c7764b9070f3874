from __future__ import annotations

import asyncio
import threading

import pytest

from livesync.lifecycles.bootstrap import bootstrap_lifecycles
from livesync.lifecycles.conf import load_subscriptions
from livesync.lifecycles.scheduler import CommitScheduler
from livesync.lifecycles.scheduler import DjangoTransactionContext
from livesync.lifecycles.scheduler import InlineRunner
from livesync.realtime import socketio as socketio_module
from livesync.realtime.socketio import SocketIOChannel
from livesync.realtime.socketio import bind_server_loop


class RecordingChannel(SocketIOChannel):
    """Channel that keeps published messages instead of emitting them."""

    def __init__(self) -> None:
        super().__init__()
        self.published: list[tuple[str, object]] = []

    def publish(self, subject, payload):
        self.published.append((subject, payload))

    def subjects(self) -> list[str]:
        return [subject for subject, _ in self.published]


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def scheduler() -> CommitScheduler:
    return CommitScheduler(DjangoTransactionContext(), InlineRunner())


@pytest.fixture
def subscribe(channel, scheduler):
    """Register lifecycles for the given content type entries for one test."""

    coordinators = []

    def _subscribe(*entries, store=None):
        coordinator = bootstrap_lifecycles(
            subscriptions=load_subscriptions(list(entries)),
            channel=channel,
            store=store,
            scheduler=scheduler,
        )
        coordinators.append(coordinator)
        return coordinator

    yield _subscribe

    for coordinator in coordinators:
        coordinator.unregister()


async def _bind_server_loop():
    bind_server_loop()


@pytest.fixture
def server_loop(monkeypatch):
    """An event loop running on its own thread, bound as the Socket.IO server loop."""

    monkeypatch.setattr(socketio_module, "_server_loop", None)
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    asyncio.run_coroutine_threadsafe(_bind_server_loop(), loop).result(timeout=2)

    yield loop

    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=2)
    loop.close()

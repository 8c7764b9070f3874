"""Run callbacks after the enclosing database transaction commits.

Publication must never observe uncommitted (or rolled back) data, so every
emission goes through ``CommitScheduler.schedule``:

- inside ``transaction.atomic`` the callback is registered with
  ``transaction.on_commit`` and dropped by Django on rollback
- in autocommit mode it is submitted right away

The runner then waits ``delay_ms`` (the settle delay) before running it.
Ordering between two scheduled callbacks is only as strict as their delays.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any
from typing import Protocol

from channels.db import database_sync_to_async
from django.conf import settings
from django.db import DEFAULT_DB_ALIAS
from django.db import connections
from django.db import transaction

from livesync.realtime.socketio import get_server_loop
from livesync.realtime.socketio import sio

logger = logging.getLogger(__name__)

_capability_warning_logged = False


class TransactionContext(Protocol):
    def get(self, using: str | None = None) -> Any | None: ...

    def on_commit(self, callback: Callable[[], None], using: str | None = None) -> None: ...


class DjangoTransactionContext:
    def get(self, using: str | None = None) -> Any | None:
        connection = transaction.get_connection(using)
        return connection if connection.in_atomic_block else None

    def on_commit(self, callback: Callable[[], None], using: str | None = None) -> None:
        transaction.on_commit(callback, using=using)


class NullTransactionContext:
    """Stand-in for hosts without transactional semantics: never in a transaction."""

    def get(self, using: str | None = None) -> Any | None:
        return None

    def on_commit(self, callback: Callable[[], None], using: str | None = None) -> None:
        callback()


def get_transaction_context(using: str | None = None) -> TransactionContext:
    """Return the Django transaction capability, or a null one if unavailable."""

    global _capability_warning_logged  # noqa: PLW0603

    try:
        connections[using or DEFAULT_DB_ALIAS]  # noqa: B018
    except Exception as exc:  # noqa: BLE001 - degrade to immediate execution
        if not _capability_warning_logged:
            _capability_warning_logged = True
            logger.warning(
                "Unable to access transaction context, emitting immediately: %s",
                exc,
            )
        return NullTransactionContext()
    return DjangoTransactionContext()


def _run_task(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception:
        logger.exception("Deferred realtime task failed")


class InlineRunner:
    """Run tasks in the calling thread after sleeping the settle delay."""

    def submit(self, callback: Callable[[], None], delay_ms: int = 0) -> None:
        if delay_ms > 0:
            time.sleep(delay_ms / 1000)
        _run_task(callback)


class ServerLoopRunner:
    """Run tasks as Socket.IO background tasks on the server's event loop.

    The settle delay is an ``sio.sleep`` on that loop. The callback (ORM
    read-back and publish) then runs through ``database_sync_to_async``, so
    its ``async_to_sync(sio.emit)`` is routed back to the same loop.

    Until a server loop is bound (management commands, scripts, a process
    that never served a request) tasks go to ``fallback``.
    """

    def __init__(self, fallback: InlineRunner | None = None) -> None:
        self.fallback = fallback or InlineRunner()

    def submit(self, callback: Callable[[], None], delay_ms: int = 0) -> None:
        loop = get_server_loop()
        if loop is None:
            logger.debug("No Socket.IO server loop bound, running task inline")
            self.fallback.submit(callback, delay_ms)
            return
        loop.call_soon_threadsafe(sio.start_background_task, self._run, callback, delay_ms)

    @staticmethod
    async def _run(callback: Callable[[], None], delay_ms: int) -> None:
        try:
            if delay_ms > 0:
                await sio.sleep(delay_ms / 1000)
            await database_sync_to_async(_run_task)(callback)
        except Exception:
            logger.exception("Deferred realtime task failed")


RUNNERS = {
    "inline": InlineRunner,
    "server": ServerLoopRunner,
}


def get_runner(name: str | None = None) -> InlineRunner | ServerLoopRunner:
    name = name or getattr(settings, "REALTIME_DEFERRED_RUNNER", "server")
    try:
        return RUNNERS[name]()
    except KeyError:
        logger.warning("Unknown REALTIME_DEFERRED_RUNNER %r, using 'server'", name)
        return ServerLoopRunner()


class CommitScheduler:
    def __init__(
        self,
        transaction_context: TransactionContext | None = None,
        runner: InlineRunner | ServerLoopRunner | None = None,
    ) -> None:
        self.transaction_context = transaction_context or get_transaction_context()
        self.runner = runner or get_runner()

    def schedule(
        self,
        callback: Callable[[], None],
        delay_ms: int = 0,
        *,
        using: str | None = None,
    ) -> None:
        """Run ``callback`` once the active transaction commits, after ``delay_ms``.

        Fire-and-forget: an exception raised by ``callback`` is logged and
        ends that task only.
        """

        def submit() -> None:
            self.runner.submit(callback, delay_ms)

        if self.transaction_context.get(using) is not None:
            self.transaction_context.on_commit(submit, using)
        else:
            submit()

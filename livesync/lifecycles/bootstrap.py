from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .conf import load_subscriptions
from .coordinator import EmissionCoordinator
from .scheduler import CommitScheduler
from .store import DocumentStore

if TYPE_CHECKING:  # import for type checking only
    from livesync.realtime.socketio import SocketIOChannel

    from .conf import Subscription

logger = logging.getLogger(__name__)


def bootstrap_lifecycles(
    *,
    subscriptions: list[Subscription] | None = None,
    channel: SocketIOChannel | None = None,
    store: DocumentStore | None = None,
    scheduler: CommitScheduler | None = None,
) -> EmissionCoordinator:
    """Build the emission coordinator and connect it for each configured model.

    Defaults come from settings (``REALTIME_CONTENT_TYPES``,
    ``REALTIME_DEFERRED_RUNNER``) and the global Socket.IO server.
    """

    if channel is None:
        from livesync.realtime.socketio import SocketIOChannel  # noqa: PLC0415

        channel = SocketIOChannel()
    if subscriptions is None:
        subscriptions = load_subscriptions()

    coordinator = EmissionCoordinator(
        store=store or DocumentStore(),
        channel=channel,
        scheduler=scheduler or CommitScheduler(),
    )
    for subscription in subscriptions:
        coordinator.register(subscription)

    logger.info("Realtime lifecycles active for %d content type(s)", len(subscriptions))
    return coordinator

"""Turn ORM lifecycle events into realtime envelopes.

For every configured model the coordinator listens to the write signals and,
per event:

1. copies what it needs out of the hook (identifiers and a JSON deep clone of
   the result) - the transaction may still be open at this point
2. hands a task to the ``CommitScheduler`` so nothing runs before commit
3. after commit (and the settle delay) re-reads the rows when needed:
   single writes with ``populate`` re-fetch by document id, bulk writes
   re-query the affected rows
4. publishes each row through the sanitizing channel

Nothing here may fail the write that triggered it: receivers and deferred
tasks log their errors and return. A missed emission is acceptable; a broken
write is not.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING
from typing import Any

from django.apps import apps
from django.db.models.signals import post_delete
from django.db.models.signals import post_save

from .events import ACTION_CREATE
from .events import ACTION_DELETE
from .events import ACTION_UPDATE
from .events import AFTER_CREATE
from .events import AFTER_CREATE_MANY
from .events import AFTER_DELETE
from .events import AFTER_UPDATE
from .events import AFTER_UPDATE_MANY
from .events import BEFORE_UPDATE_MANY
from .events import Envelope
from .events import LifecycleEvent
from .events import ModelIdentity
from .events import WriteParams
from .events import document_id_of
from .events import identity_payload
from .events import snapshot
from .query import build_event_query
from .signals import post_bulk_create
from .signals import post_bulk_update
from .signals import pre_bulk_update
from .store import serialize_instance

if TYPE_CHECKING:  # import for type checking only
    from livesync.realtime.socketio import SocketIOChannel

    from .conf import Subscription
    from .scheduler import CommitScheduler
    from .store import DocumentStore

logger = logging.getLogger(__name__)

# Settle delays (ms) between commit and the read-back/publish.
NO_DELAY = 0
REFETCH_DELAY = 50
BULK_REFETCH_DELAY = 50
DELETE_DELAY = 100


def _captured_pk(instance) -> Any:
    return snapshot(instance.pk) if instance is not None else None


class EmissionCoordinator:
    def __init__(
        self,
        *,
        store: DocumentStore,
        channel: SocketIOChannel,
        scheduler: CommitScheduler,
    ) -> None:
        self.store = store
        self.channel = channel
        self.scheduler = scheduler
        self._connections: list[tuple[Any, Any, str]] = []

    # Registration -----------------------------------------------------------

    def register(self, subscription: Subscription) -> None:
        """Connect the signal receivers for one configured model."""

        model = apps.get_model(subscription.uid)
        actions = subscription.actions

        if ACTION_CREATE in actions or ACTION_UPDATE in actions:
            self._connect(post_save, model, partial(self._on_post_save, subscription))
        if ACTION_CREATE in actions:
            self._connect(
                post_bulk_create,
                model,
                partial(self._on_post_bulk_create, subscription),
            )
        if ACTION_UPDATE in actions:
            self._connect(
                pre_bulk_update,
                model,
                partial(self._on_pre_bulk_update, subscription),
            )
            self._connect(
                post_bulk_update,
                model,
                partial(self._on_post_bulk_update, subscription),
            )
        if ACTION_DELETE in actions:
            self._connect(post_delete, model, partial(self._on_post_delete, subscription))

        logger.debug(
            "Realtime lifecycles registered for %s (%s)",
            subscription.uid,
            ", ".join(sorted(actions)),
        )

    def unregister(self) -> None:
        for signal, model, dispatch_uid in self._connections:
            signal.disconnect(sender=model, dispatch_uid=dispatch_uid)
        self._connections.clear()

    def _connect(self, signal, model, receiver) -> None:
        name = receiver.func.__name__
        dispatch_uid = f"livesync.{model._meta.label_lower}.{name}.{id(self)}"  # noqa: SLF001
        signal.connect(receiver, sender=model, weak=False, dispatch_uid=dispatch_uid)
        self._connections.append((signal, model, dispatch_uid))

    # Signal receivers -------------------------------------------------------
    #
    # Receivers translate Django signal arguments into LifecycleEvents. They
    # run inside the write, so every exception stops here.

    def _on_post_save(self, subscription, sender, instance, created, raw=False, **kwargs):
        if raw:
            return
        action = ACTION_CREATE if created else ACTION_UPDATE
        if action not in subscription.actions:
            return
        try:
            event = LifecycleEvent(
                action=AFTER_CREATE if created else AFTER_UPDATE,
                model=ModelIdentity.for_model(sender),
                result=serialize_instance(instance) if instance is not None else None,
                using=kwargs.get("using"),
                pk=_captured_pk(instance),
            )
            if created:
                self.after_create(subscription, event)
            else:
                self.after_update(subscription, event)
        except Exception:
            logger.exception("Could not capture %s event for %s", action, subscription.uid)

    def _on_post_bulk_create(self, subscription, sender, result, params=None, **kwargs):
        try:
            event = LifecycleEvent(
                action=AFTER_CREATE_MANY,
                model=ModelIdentity.for_model(sender),
                result=result,
                params=params or WriteParams(),
                using=kwargs.get("using"),
            )
            self.after_create_many(subscription, event)
        except Exception:
            logger.exception("Could not capture createMany event for %s", subscription.uid)

    def _on_pre_bulk_update(self, subscription, sender, params, state, **kwargs):
        try:
            event = LifecycleEvent(
                action=BEFORE_UPDATE_MANY,
                model=ModelIdentity.for_model(sender),
                params=params,
                state=state,
                using=kwargs.get("using"),
            )
            self.before_update_many(subscription, event)
        except Exception:
            logger.exception("Could not capture updateMany params for %s", subscription.uid)

    def _on_post_bulk_update(self, subscription, sender, result, state, **kwargs):
        try:
            event = LifecycleEvent(
                action=AFTER_UPDATE_MANY,
                model=ModelIdentity.for_model(sender),
                result=result,
                state=state,
                using=kwargs.get("using"),
            )
            self.after_update_many(subscription, event)
        except Exception:
            logger.exception("Could not capture updateMany event for %s", subscription.uid)

    def _on_post_delete(self, subscription, sender, instance, **kwargs):
        try:
            event = LifecycleEvent(
                action=AFTER_DELETE,
                model=ModelIdentity.for_model(sender),
                result=serialize_instance(instance) if instance is not None else None,
                using=kwargs.get("using"),
                pk=_captured_pk(instance),
            )
            self.after_delete(subscription, event)
        except Exception:
            logger.exception("Could not capture delete event for %s", subscription.uid)

    # Lifecycle handlers -----------------------------------------------------

    def after_create(self, subscription: Subscription, event: LifecycleEvent) -> None:
        self._capture_single(subscription, event, ACTION_CREATE)

    def after_update(self, subscription: Subscription, event: LifecycleEvent) -> None:
        self._capture_single(subscription, event, ACTION_UPDATE)

    def after_create_many(self, subscription: Subscription, event: LifecycleEvent) -> None:
        query = build_event_query(event)
        if "filters" not in query:
            return
        query = snapshot(query)
        if subscription.has_populate:
            query["populate"] = subscription.native_populate()

        self.scheduler.schedule(
            partial(
                self._publish_many,
                subscription.uid,
                ACTION_CREATE,
                event.model.as_schema(),
                query,
            ),
            BULK_REFETCH_DELAY,
            using=event.using,
        )

    def before_update_many(self, subscription: Subscription, event: LifecycleEvent) -> None:
        # No queries here: the update hasn't run yet. Only keep the filter
        # for after_update_many, which can't see it.
        event.state.params = event.params

    def after_update_many(self, subscription: Subscription, event: LifecycleEvent) -> None:
        params = event.state.params
        if params is None or params.where is None:
            logger.debug(
                "No captured filter in %s for %s, skipping",
                event.action,
                subscription.uid,
            )
            return

        query: dict[str, Any] = {"filters": snapshot(params.where)}
        if subscription.has_populate:
            query["populate"] = subscription.native_populate()

        self.scheduler.schedule(
            partial(
                self._publish_many,
                subscription.uid,
                ACTION_UPDATE,
                event.model.as_schema(),
                query,
            ),
            BULK_REFETCH_DELAY,
            using=event.using,
        )

    def after_delete(self, subscription: Subscription, event: LifecycleEvent) -> None:
        if not event.result:
            logger.debug("No result data in %s for %s", event.action, subscription.uid)
            return

        # the row is gone: publish identity only, never re-fetch
        payload = identity_payload(event.result, event.record_pk())
        subject = f"{event.model.singular_name}:{ACTION_DELETE}"

        self.scheduler.schedule(
            partial(self._publish_delete, subscription.uid, subject, payload),
            DELETE_DELAY,
            using=event.using,
        )

    # Deferred work ----------------------------------------------------------

    def _capture_single(
        self,
        subscription: Subscription,
        event: LifecycleEvent,
        action: str,
    ) -> None:
        if not event.result:
            logger.debug("No result data in %s for %s", event.action, subscription.uid)
            return

        data = snapshot(event.result)
        document_id = document_id_of(data, snapshot(event.record_pk()))

        self.scheduler.schedule(
            partial(
                self._publish_single,
                subscription,
                action,
                event.model.as_schema(),
                document_id,
                data,
            ),
            REFETCH_DELAY if subscription.has_populate else NO_DELAY,
            using=event.using,
        )

    def _refetch(self, subscription: Subscription, document_id: Any) -> dict | None:
        if document_id is None:
            logger.debug("Cannot re-fetch %s without a document id", subscription.uid)
            return None
        try:
            return self.store.find_one(
                subscription.uid,
                document_id,
                subscription.native_populate(),
            )
        except Exception as exc:  # noqa: BLE001 - fall back to the captured snapshot
            logger.warning(
                "Could not re-fetch %s %s with populate: %s",
                subscription.uid,
                document_id,
                exc,
            )
            return None

    def _publish_single(
        self,
        subscription: Subscription,
        action: str,
        schema: dict[str, str],
        document_id: Any,
        captured: dict[str, Any],
    ) -> None:
        try:
            data = captured
            if subscription.has_populate:
                data = self._refetch(subscription, document_id) or captured
            self.channel.publish_sanitized(Envelope(event=action, schema=schema, data=data))
        except Exception:
            logger.exception("Could not emit %s event for %s", action, subscription.uid)

    def _publish_many(
        self,
        uid: str,
        action: str,
        schema: dict[str, str],
        query: dict[str, Any],
    ) -> None:
        try:
            records = self.store.find_many(uid, **query)
        except Exception as exc:  # noqa: BLE001 - the batch is dropped, nothing else
            logger.warning("Could not fetch records for %s %s: %s", uid, action, exc)
            return

        for record in records:
            try:
                self.channel.publish_sanitized(
                    Envelope(event=action, schema=schema, data=record),
                )
            except Exception:
                logger.exception("Could not emit %s event for %s", action, uid)

    def _publish_delete(self, uid: str, subject: str, payload: dict[str, Any]) -> None:
        try:
            self.channel.publish_raw(subject, payload)
        except Exception:
            logger.exception("Could not emit delete event for %s", uid)

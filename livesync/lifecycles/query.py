from __future__ import annotations

from typing import TYPE_CHECKING
from typing import Any

from .events import AFTER_CREATE_MANY
from .events import BEFORE_UPDATE

if TYPE_CHECKING:  # import for type checking only
    from .events import LifecycleEvent


def build_event_query(event: LifecycleEvent) -> dict[str, Any]:
    """Derive the read-back query (``filters``/``limit``/``fields``) for a bulk event.

    An empty dict matches every row; callers decide whether that is intended.
    """

    query: dict[str, Any] = {}
    result = event.result or {}

    if event.params.where:
        query["filters"] = event.params.where

    if result.get("count"):
        query["limit"] = result["count"]
    elif event.params.limit:
        query["limit"] = event.params.limit

    if event.action == AFTER_CREATE_MANY:
        # bulk inserts report ids only, not rows
        query["filters"] = {"pk__in": list(result.get("ids") or [])}
    elif event.action == BEFORE_UPDATE:
        query["fields"] = ["id"]

    return query

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from django.db import models

from .events import EventState
from .events import WriteParams
from .signals import post_bulk_create
from .signals import post_bulk_update
from .signals import pre_bulk_update


def _plain_lookup_value(value: Any) -> Any:
    if isinstance(value, models.Model):
        return value.pk
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain_lookup_value(item) for item in value]
    return value


class LifecycleQuerySet(models.QuerySet):
    """QuerySet that sends bulk lifecycle signals.

    Keyword lookups passed to ``filter()`` are recorded so that an
    ``update()`` can report its filter to the bulk signals. Anything that
    cannot be expressed as plain keyword lookups (``Q`` objects,
    ``exclude()``) marks the filter as unknown.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._write_where: dict[str, Any] | None = {}

    def _clone(self):
        clone = super()._clone()
        clone._write_where = (  # noqa: SLF001
            None if self._write_where is None else dict(self._write_where)
        )
        return clone

    def filter(self, *args, **kwargs):
        clone = super().filter(*args, **kwargs)
        if args:
            clone._write_where = None  # noqa: SLF001
        elif clone._write_where is not None:  # noqa: SLF001
            for lookup, value in kwargs.items():
                # only plain values can be replayed after the update
                if (
                    lookup in clone._write_where  # noqa: SLF001
                    or hasattr(value, "resolve_expression")
                    or isinstance(value, Iterator)
                ):
                    clone._write_where = None  # noqa: SLF001
                    break
                clone._write_where[lookup] = _plain_lookup_value(value)  # noqa: SLF001
        return clone

    def exclude(self, *args, **kwargs):
        clone = super().exclude(*args, **kwargs)
        clone._write_where = None  # noqa: SLF001
        return clone

    def bulk_create(self, objs, *args, **kwargs):
        created = super().bulk_create(objs, *args, **kwargs)
        ids = [obj.pk for obj in created if obj.pk is not None]
        post_bulk_create.send(
            sender=self.model,
            result={"count": len(created), "ids": ids},
            params=WriteParams(),
            using=self.db,
        )
        return created

    def update(self, **kwargs):
        state = EventState()
        pre_bulk_update.send(
            sender=self.model,
            params=WriteParams(where=self._write_where),
            state=state,
            using=self.db,
        )
        rows = super().update(**kwargs)
        post_bulk_update.send(
            sender=self.model,
            result={"count": rows},
            state=state,
            using=self.db,
        )
        return rows


LifecycleManager = models.Manager.from_queryset(LifecycleQuerySet)

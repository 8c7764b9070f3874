from __future__ import annotations

import json
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from django.core.serializers.json import DjangoJSONEncoder

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"
ACTIONS = (ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE)

AFTER_CREATE = "afterCreate"
AFTER_CREATE_MANY = "afterCreateMany"
AFTER_UPDATE = "afterUpdate"
BEFORE_UPDATE = "beforeUpdate"
BEFORE_UPDATE_MANY = "beforeUpdateMany"
AFTER_UPDATE_MANY = "afterUpdateMany"
AFTER_DELETE = "afterDelete"


@dataclass(frozen=True)
class ModelIdentity:
    singular_name: str
    uid: str
    pk_name: str = "id"

    @classmethod
    def for_model(cls, model) -> ModelIdentity:
        opts = model._meta  # noqa: SLF001
        return cls(singular_name=opts.model_name, uid=opts.label_lower, pk_name=opts.pk.name)

    def as_schema(self) -> dict[str, str]:
        return {"singularName": self.singular_name, "uid": self.uid}


@dataclass
class WriteParams:
    """Parameters of a bulk write: keyword lookups and an optional limit.

    ``where`` is ``None`` when the filter could not be captured (``Q``
    objects, ``exclude()``); an empty dict means every row.
    """

    where: dict[str, Any] | None = None
    limit: int | None = None


@dataclass
class EventState:
    """Per-write state shared between the before/after hooks of one bulk write."""

    params: WriteParams | None = None


@dataclass
class LifecycleEvent:
    action: str
    model: ModelIdentity
    result: dict[str, Any] | None = None
    params: WriteParams = field(default_factory=WriteParams)
    state: EventState = field(default_factory=EventState)
    using: str | None = None
    # primary key captured at hook time; the result may not carry it
    pk: Any = None

    def record_pk(self) -> Any:
        if self.pk is not None:
            return self.pk
        return (self.result or {}).get(self.model.pk_name)


@dataclass(frozen=True)
class Envelope:
    event: str
    schema: dict[str, str]
    data: Any


def snapshot(value: Any) -> Any:
    """Deep-clone ``value`` into plain JSON types.

    Hooks run while the write's transaction may still be open; anything used
    after commit has to be copied out of the ORM's object graph first.
    """

    return json.loads(json.dumps(value, cls=DjangoJSONEncoder))


def document_id_of(record: dict[str, Any], pk: Any = None) -> Any:
    document_id = record.get("document_id")
    return document_id if document_id is not None else pk


def identity_payload(record: dict[str, Any], pk: Any = None) -> dict[str, Any]:
    """Identity-only payload for deletes: ``id`` and ``documentId`` cross-filled.

    ``pk`` is the primary key as captured from the instance; the record
    is keyed by field name and may not hold it under ``id``.
    """

    record_id = pk
    document_id = record.get("document_id")
    return {
        "id": record_id if record_id is not None else document_id,
        "documentId": document_id if document_id is not None else record_id,
    }

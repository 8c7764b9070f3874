"""Read-back access to the ORM, returning JSON-safe records.

Records carry the model's concrete, non-relation fields under their field
names. Relations are only included when asked for through ``populate``:

- ``"*"`` - every forward and reverse relation, one level deep
- ``{"author": True, "tags": {"fields": ["label"]}}`` - named relations,
  optionally restricted to some fields and with their own ``populate``

Reverse relations are addressed by their accessor name (``articles`` or
``article_set``).
"""

from __future__ import annotations

from typing import Any

from django.apps import apps
from django.core.exceptions import FieldDoesNotExist
from django.core.exceptions import ObjectDoesNotExist

from .events import snapshot
from .populate import WILDCARD
from .populate import normalize_populate

IDENTITY_FIELD = "document_id"


def _meta(model):
    return model._meta  # noqa: SLF001


def relation_fields(model) -> dict[str, Any]:
    """Map relation names (field name or reverse accessor) to their field."""

    relations: dict[str, Any] = {}
    for field in _meta(model).get_fields():
        if not field.is_relation or field.related_model is None:
            continue
        if getattr(field, "hidden", False):
            continue
        if field.auto_created and not field.concrete:
            name = field.get_accessor_name()
            if not name:
                continue
        else:
            name = field.name
        relations[name] = field
    return relations


def _resolve_populate(model, populate: Any) -> dict[str, Any]:
    """Expand a native populate value into ``{relation name: options}``."""

    if populate is None:
        return {}
    relations = relation_fields(model)
    if populate == WILDCARD:
        return dict.fromkeys(relations, True)

    resolved: dict[str, Any] = {}
    for name, options in populate.items():
        if name not in relations:
            msg = f"{_meta(model).label} has no relation named '{name}'"
            raise FieldDoesNotExist(msg)
        if options is False or options is None:
            continue
        resolved[name] = options
    return resolved


def _is_many(field) -> bool:
    return bool(field.many_to_many or field.one_to_many)


def _base_values(instance, fields: list[str] | None) -> dict[str, Any]:
    pk_name = _meta(instance).pk.name
    wanted = None
    if fields:
        wanted = {pk_name if name == "id" else name for name in fields}

    data: dict[str, Any] = {}
    for field in _meta(instance).concrete_fields:
        if field.is_relation:
            continue
        if wanted is not None and field.name not in wanted:
            continue
        data[field.name] = field.value_from_object(instance)
    return data


def _serialize(instance, populate: Any, fields: list[str] | None) -> dict[str, Any]:
    data = _base_values(instance, fields)
    relations = relation_fields(type(instance))

    for name, options in _resolve_populate(type(instance), populate).items():
        nested_fields = None
        nested_populate = None
        if isinstance(options, dict):
            nested_fields = options.get("fields")
            nested_populate = normalize_populate(options.get("populate"))

        if _is_many(relations[name]):
            related = getattr(instance, name).all()
            data[name] = [
                _serialize(obj, nested_populate, nested_fields) for obj in related
            ]
            continue

        try:
            related = getattr(instance, name)
        except ObjectDoesNotExist:
            related = None
        data[name] = (
            _serialize(related, nested_populate, nested_fields)
            if related is not None
            else None
        )

    return data


def serialize_instance(
    instance,
    populate: Any = None,
    fields: list[str] | None = None,
) -> dict[str, Any]:
    """Serialize ``instance`` into plain JSON types, including populated relations."""

    return snapshot(_serialize(instance, populate, fields))


class DocumentStore:
    """Read API used by the emission coordinator."""

    def __init__(self, using: str | None = None) -> None:
        self.using = using

    def get_model(self, uid: str):
        return apps.get_model(uid)

    def identity_lookup(self, model) -> str:
        try:
            _meta(model).get_field(IDENTITY_FIELD)
        except FieldDoesNotExist:
            return "pk"
        return IDENTITY_FIELD

    def _queryset(self, model, populate: Any):
        qs = model._default_manager.all()  # noqa: SLF001
        if self.using:
            qs = qs.using(self.using)

        relations = relation_fields(model)
        single: list[str] = []
        many: list[str] = []
        for name in _resolve_populate(model, populate):
            field = relations[name]
            if _is_many(field):
                many.append(name)
            else:
                single.append(name)
        if single:
            qs = qs.select_related(*single)
        if many:
            qs = qs.prefetch_related(*many)
        return qs

    def find_one(
        self,
        uid: str,
        document_id: Any,
        populate: Any = None,
    ) -> dict[str, Any] | None:
        model = self.get_model(uid)
        lookup = {self.identity_lookup(model): document_id}
        instance = self._queryset(model, populate).filter(**lookup).first()
        if instance is None:
            return None
        return serialize_instance(instance, populate)

    def find_many(
        self,
        uid: str,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        fields: list[str] | None = None,
        populate: Any = None,
    ) -> list[dict[str, Any]]:
        model = self.get_model(uid)
        qs = self._queryset(model, populate).order_by("pk")
        if filters:
            qs = qs.filter(**filters)
        if limit:
            qs = qs[:limit]
        return [serialize_instance(instance, populate, fields) for instance in qs]

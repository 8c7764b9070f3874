"""Populate configuration: which related records to include when re-fetching.

Accepted configuration shapes:

- ``"*"`` or ``True`` - every relation, one level deep
- a list of relation names - ``["author", "tags"]``
- a native shape - ``{"author": {"fields": ["name"]}, "tags": True}``

The shape is classified once when settings are loaded; per event only the
native value is used.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

WILDCARD = "*"


@dataclass(frozen=True)
class Wildcard:
    def native(self) -> str:
        return WILDCARD


@dataclass(frozen=True)
class FieldList:
    fields: tuple[str, ...]

    def native(self) -> dict[str, bool]:
        return dict.fromkeys(self.fields, True)


@dataclass(frozen=True)
class Shape:
    shape: dict[str, Any]

    def native(self) -> dict[str, Any]:
        return self.shape


PopulateConfig = Wildcard | FieldList | Shape


def classify_populate(config: Any) -> PopulateConfig | None:
    if config == WILDCARD or config is True:
        return Wildcard()
    if isinstance(config, (list, tuple)):
        return FieldList(tuple(config))
    if isinstance(config, dict):
        return Shape(config)
    return None


def normalize_populate(config: Any) -> str | dict[str, Any] | None:
    """Translate a populate configuration into the store's native argument.

    Returns ``None`` for anything unrecognised, meaning "no extra fetch".
    """

    variant = classify_populate(config)
    if variant is None:
        return None
    return variant.native()

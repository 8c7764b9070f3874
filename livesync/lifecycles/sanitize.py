"""Outgoing payload sanitization.

Two layers run on every envelope:

1. ``content_api_output`` - the model-level field permissions: each model may
   declare ``private_fields``, which are never published. Populated relations
   are checked against their own model.
2. ``remove_sensitive_fields`` - a name-based safety net that drops any key
   whose lower-cased name contains one of the sensitive fragments, at every
   depth. Matching is by substring, so ``passwordHash`` and ``user_token`` are
   caught without configuration (and ``tokenizer`` is dropped too).
"""

from __future__ import annotations

import logging
from typing import Any

from django.apps import apps
from django.conf import settings

from .store import relation_fields

logger = logging.getLogger(__name__)

DEFAULT_SENSITIVE_FIELDS = (
    "password",
    "resetPasswordToken",
    "confirmationToken",
    "refreshToken",
    "accessToken",
    "secret",
    "apiKey",
    "api_key",
    "privateKey",
    "private_key",
    "token",
    "salt",
    "hash",
)


def get_sensitive_fields() -> list[str]:
    """Built-in fragments plus ``REALTIME_SENSITIVE_FIELDS``.

    Read on every call so settings overrides apply without a restart.
    """

    custom = getattr(settings, "REALTIME_SENSITIVE_FIELDS", None) or []
    return [*DEFAULT_SENSITIVE_FIELDS, *custom]


def _is_sensitive(key: Any, fragments: list[str]) -> bool:
    lower_key = str(key).lower()
    return any(fragment in lower_key for fragment in fragments)


def _remove(data: Any, fragments: list[str]) -> Any:
    if isinstance(data, dict):
        return {
            key: _remove(value, fragments)
            for key, value in data.items()
            if not _is_sensitive(key, fragments)
        }
    if isinstance(data, list):
        return [_remove(item, fragments) for item in data]
    if isinstance(data, tuple):
        return tuple(_remove(item, fragments) for item in data)
    return data


def remove_sensitive_fields(data: Any, sensitive_fields: list[str]) -> Any:
    """Recursively drop every key matching a sensitive fragment (case-insensitive)."""

    fragments = [
        fragment.lower()
        for fragment in sensitive_fields
        if isinstance(fragment, str) and fragment.strip()
    ]
    return _remove(data, fragments)


def _strip_private(data: Any, model) -> Any:
    if isinstance(data, (list, tuple)):
        return [_strip_private(item, model) for item in data]
    if not isinstance(data, dict):
        return data

    private = set(getattr(model, "private_fields", ()))
    relations = {
        name: field.related_model for name, field in relation_fields(model).items()
    }
    out: dict[str, Any] = {}
    for key, value in data.items():
        if key in private:
            continue
        related_model = relations.get(key)
        if related_model is not None and isinstance(value, (dict, list, tuple)):
            out[key] = _strip_private(value, related_model)
        else:
            out[key] = value
    return out


def content_api_output(data: Any, schema: dict[str, str]) -> Any:
    """Apply the model's own field permissions (``private_fields``)."""

    model = apps.get_model(schema["uid"])
    return _strip_private(data, model)


def output(data: Any, schema: dict[str, str] | None = None) -> Any:
    """Schema-aware sanitization used for create/update envelopes."""

    sanitized = data
    if schema:
        try:
            sanitized = content_api_output(data, schema)
        except Exception as exc:  # noqa: BLE001 - fall back to manual removal
            logger.debug("Content API sanitization failed: %s", exc)
            sanitized = data

    return remove_sensitive_fields(sanitized, get_sensitive_fields())


def sanitize_raw(data: Any) -> Any:
    """Sanitize data that has no schema context (e.g. delete payloads)."""

    return remove_sensitive_fields(data, get_sensitive_fields())

"""Load and validate ``REALTIME_CONTENT_TYPES``.

Each entry is either a model uid (``"blog.article"``, every action, no
populate) or a mapping::

    {
        "uid": "blog.article",
        "actions": ["create", "update"],
        "populate": ["author"],
    }
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from django.apps import apps
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from rest_framework import serializers

from .events import ACTIONS
from .populate import PopulateConfig
from .populate import classify_populate


@dataclass(frozen=True)
class Subscription:
    uid: str
    actions: frozenset[str] = frozenset(ACTIONS)
    populate: PopulateConfig | None = None

    @property
    def has_populate(self) -> bool:
        return self.populate is not None

    def native_populate(self) -> Any:
        return self.populate.native() if self.populate is not None else None


class PopulateField(serializers.Field):
    default_error_messages = {
        "invalid": (
            "Expected '*', true, a list of relation names or a populate mapping."
        ),
    }

    def to_internal_value(self, data):
        if isinstance(data, (list, tuple)) and not all(
            isinstance(item, str) for item in data
        ):
            self.fail("invalid")
        variant = classify_populate(data)
        if variant is None:
            self.fail("invalid")
        return variant

    def to_representation(self, value):
        return value.native()


class ContentTypeSerializer(serializers.Serializer):
    uid = serializers.CharField()
    actions = serializers.ListField(
        child=serializers.ChoiceField(choices=ACTIONS),
        required=False,
    )
    populate = PopulateField(required=False)

    def to_internal_value(self, data):
        if isinstance(data, str):
            data = {"uid": data}
        return super().to_internal_value(data)

    def validate_uid(self, value: str) -> str:
        try:
            model = apps.get_model(value)
        except (LookupError, ValueError) as exc:
            msg = f"Unknown model '{value}'."
            raise serializers.ValidationError(msg) from exc
        return model._meta.label_lower  # noqa: SLF001

    def create(self, validated_data) -> Subscription:
        actions = validated_data.get("actions")
        return Subscription(
            uid=validated_data["uid"],
            actions=frozenset(actions) if actions is not None else frozenset(ACTIONS),
            populate=validated_data.get("populate"),
        )


def load_subscriptions(entries: list[Any] | None = None) -> list[Subscription]:
    """Validate content type entries (default: settings) into subscriptions."""

    if entries is None:
        entries = getattr(settings, "REALTIME_CONTENT_TYPES", None) or []

    subscriptions: list[Subscription] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        serializer = ContentTypeSerializer(data=entry)
        if not serializer.is_valid():
            msg = f"Invalid REALTIME_CONTENT_TYPES[{index}]: {serializer.errors}"
            raise ImproperlyConfigured(msg)
        subscription = serializer.save()
        # one receiver per model and signal; a second entry would be dropped
        if subscription.uid in seen:
            msg = (
                f"Invalid REALTIME_CONTENT_TYPES[{index}]: "
                f"'{subscription.uid}' is already configured."
            )
            raise ImproperlyConfigured(msg)
        seen.add(subscription.uid)
        subscriptions.append(subscription)
    return subscriptions

import importlib

from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class LifecyclesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "livesync.lifecycles"
    verbose_name = _("Realtime lifecycles")
    coordinator = None

    def ready(self) -> None:
        bootstrap = importlib.import_module("livesync.lifecycles.bootstrap")
        self.coordinator = bootstrap.bootstrap_lifecycles()
        return super().ready()

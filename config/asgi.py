"""
ASGI entrypoint: the Socket.IO server in front of Django.

Exposes ``application``. Deferred realtime tasks run on this server's event
loop, which is bound on lifespan startup.
"""

import os

from django.core.asgi import get_asgi_application

# BUILD_ENV=local selects local settings, anything else production.
if "DJANGO_SETTINGS_MODULE" not in os.environ:
    build_env = os.environ.get("BUILD_ENV", "production").lower()
    os.environ["DJANGO_SETTINGS_MODULE"] = (
        "config.settings.local" if build_env == "local" else "config.settings.production"
    )

django_application = get_asgi_application()

from socketio import ASGIApp  # noqa: E402

from livesync.realtime.socketio import bind_server_loop  # noqa: E402
from livesync.realtime.socketio import sio  # noqa: E402

application = ASGIApp(
    sio,
    other_asgi_app=django_application,
    socketio_path=os.environ.get("REALTIME_SOCKETIO_PATH", "socket.io"),
    on_startup=bind_server_loop,
)

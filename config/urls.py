# Socket.IO is mounted in config.asgi; Django itself serves no routes yet.
urlpatterns: list = []

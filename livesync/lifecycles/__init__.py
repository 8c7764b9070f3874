"""Model lifecycle events published over the realtime channel.

Configured models (``REALTIME_CONTENT_TYPES``) emit ``<model>:create``,
``<model>:update`` and ``<model>:delete`` once the write's transaction has
committed. Payloads are sanitized before they leave the process.
"""

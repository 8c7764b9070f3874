"""Bulk write signals.

Django sends no signals for ``QuerySet.bulk_create`` or ``QuerySet.update``;
models using ``LifecycleManager`` send these instead.

- ``post_bulk_create``: ``sender``, ``result`` (``{"count", "ids"}``),
  ``params``, ``using``
- ``pre_bulk_update``: ``sender``, ``params`` (``WriteParams``), ``state``,
  ``using``
- ``post_bulk_update``: ``sender``, ``result`` (``{"count"}``), ``state``,
  ``using``

``pre_bulk_update`` and ``post_bulk_update`` of one ``update()`` call share
the same ``state`` object.
"""

from django.dispatch import Signal

post_bulk_create = Signal()
pre_bulk_update = Signal()
post_bulk_update = Signal()

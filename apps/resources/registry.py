"""
Resource Registry

Read access to resources for the booking core. ``get`` is a plain read
for display paths; ``get_for_update`` locks the resource for the rest of
the enclosing unit of work so concurrent admissions serialize.
"""

from __future__ import annotations

import logging

from django.db import DEFAULT_DB_ALIAS, OperationalError, connections  # type: ignore

from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import LockTimeoutError, NotFoundError

from .locks import ResourceLockRegistry, resource_locks
from .models import Resource

logger = logging.getLogger(__name__)


class ResourceRegistry:
    def __init__(
        self,
        locks: ResourceLockRegistry | None = None,
        lock_timeout: float = 5.0,
    ):
        self.locks = locks or resource_locks
        self.lock_timeout = lock_timeout

    def get(self, resource_id: int) -> Resource:
        try:
            return Resource.objects.get(pk=resource_id)
        except (Resource.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Resource not found.", details={"resource_id": resource_id})

    def get_for_update(self, resource_id: int, uow: DjangoUnitOfWork) -> Resource:
        """
        Lock and return the resource.

        Must be called inside ``uow``. The process mutex is released by the
        unit of work once its transaction has ended; the row lock ends with
        the transaction itself.
        """
        lock = self.locks.acquire(resource_id, self.lock_timeout)
        uow.on_release(lock.release)

        using = uow.using or DEFAULT_DB_ALIAS
        connection = connections[using]
        queryset = Resource.objects.using(using)
        if connection.features.has_select_for_update:
            if connection.vendor == "postgresql":
                timeout_ms = int(self.lock_timeout * 1000)
                with connection.cursor() as cursor:
                    cursor.execute(f"SET LOCAL lock_timeout = {timeout_ms}")
            queryset = queryset.select_for_update()

        try:
            return queryset.get(pk=resource_id)
        except Resource.DoesNotExist:
            raise NotFoundError("Resource not found.", details={"resource_id": resource_id})
        except OperationalError as e:
            logger.warning(f"Row lock on resource {resource_id} failed: {e}")
            raise LockTimeoutError(details={"resource_id": resource_id}) from e

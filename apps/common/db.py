"""
Database call helpers for the billing lifecycle.

Lifecycle services run each unit of work through ``store_call`` so that every
read/write carries a bounded timeout and infrastructure failures surface as a
retryable ``StoreUnavailableError`` instead of a generic 500.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from django.db import DatabaseError, IntegrityError, OperationalError, connection, transaction

from apps.billing.config import get_entity_store_timeout_seconds
from apps.common.types import StoreUnavailableError

logger = logging.getLogger(__name__)


@contextmanager
def store_call(operation: str, timeout_seconds: int | None = None) -> Iterator[None]:
    """
    Run a block atomically under a statement timeout.

    On PostgreSQL the timeout is applied with ``SET LOCAL statement_timeout`` so
    it only lives for the enclosing transaction. Other backends rely on their
    connection-level timeout. Business errors raised inside the block roll the
    transaction back and propagate unchanged.
    """
    timeout = timeout_seconds or get_entity_store_timeout_seconds()
    try:
        with transaction.atomic():
            if connection.vendor == "postgresql":
                with connection.cursor() as cursor:
                    cursor.execute("SET LOCAL statement_timeout = %s", [timeout * 1000])
            yield
    except IntegrityError:
        # Constraint violations are meaningful to callers (duplicates, races)
        raise
    except (OperationalError, DatabaseError) as e:
        logger.error(f"🔥 [Store] {operation} failed after <= {timeout}s: {e}")
        raise StoreUnavailableError(
            f"{operation} could not be completed, please retry"
        ) from e

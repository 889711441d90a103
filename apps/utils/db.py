import logging
from contextlib import contextmanager

from django.db import DEFAULT_DB_ALIAS, DatabaseError, transaction

from apps.utils.exceptions import TransactionFailure

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(using=DEFAULT_DB_ALIAS, operation="operation"):
    """
    One atomic block for a whole business operation.

    Business exceptions pass through untouched (the block is rolled back).
    Database errors are rolled back and re-raised as TransactionFailure.
    """
    try:
        with transaction.atomic(using=using):
            yield
    except DatabaseError as exc:
        logger.warning("Rolled back %s: %s", operation, exc)
        raise TransactionFailure(operation, exc) from exc


def require_transaction(using=DEFAULT_DB_ALIAS):
    if not transaction.get_connection(using).in_atomic_block:
        raise transaction.TransactionManagementError(
            "Stock primitives must run inside the caller's transaction."
        )

"""
Per-document command locks.

Locks live in the shared Django cache so they hold across worker processes
when a Redis cache is configured. A lock records the operation holding it:
a conversion and a line/header edit of the same document never wait for
each other, the newcomer fails at once with DocumentLockedError. Any other
contention waits up to ``SALES_LOCK_WAIT`` seconds before giving up with
ConcurrencyConflictError.
"""
import logging
import time
import uuid
from contextlib import contextmanager

from django.conf import settings
from django.core.cache import cache

from .exceptions import ConcurrencyConflictError, DocumentLockedError

logger = logging.getLogger(__name__)

LOCK_KEY = 'sales:doclock:{}'
POLL_INTERVAL = 0.05

CONVERT = 'convert'
EDIT = 'edit'

# Pairs of operations that refuse to queue behind each other
EXCLUSIVE_PAIRS = {
    (CONVERT, EDIT),
    (EDIT, CONVERT),
}


def lock_key(document_id):
    """Cache key of a document lock; every spelling of the same UUID maps to one key"""
    try:
        document_id = uuid.UUID(str(document_id))
    except (TypeError, ValueError):
        pass
    return LOCK_KEY.format(document_id)


def held_operation(document_id):
    """Operation currently holding the document lock, or None"""
    value = cache.get(lock_key(document_id))
    if not value:
        return None
    return value.split(':', 1)[0]


@contextmanager
def document_lock(document_id, operation):
    """
    Hold the exclusive command lock of one document for the duration of the
    block. The lock expires after ``SALES_LOCK_TIMEOUT`` seconds so a crashed
    worker cannot wedge a document.
    """
    key = lock_key(document_id)
    value = f"{operation}:{uuid.uuid4().hex}"
    timeout = settings.SALES_LOCK_TIMEOUT
    deadline = time.monotonic() + settings.SALES_LOCK_WAIT

    while not cache.add(key, value, timeout):
        holder = held_operation(document_id)
        if holder and (operation, holder) in EXCLUSIVE_PAIRS:
            logger.warning(f"{operation} refused on document {document_id}: {holder} in progress")
            raise DocumentLockedError(
                f"Document is locked by a running {holder}",
                documentId=document_id,
                heldBy=holder,
                operation=operation,
            )
        if time.monotonic() >= deadline:
            logger.warning(f"Timed out waiting for lock on document {document_id} ({operation}, held by {holder})")
            raise ConcurrencyConflictError(
                "Document is busy, retry the command",
                documentId=document_id,
                operation=operation,
            )
        time.sleep(POLL_INTERVAL)

    try:
        yield
    finally:
        # Never release a lock that expired and was taken by someone else
        if cache.get(key) == value:
            cache.delete(key)

"""
Exclusive per-item locking for stock-affecting operations.

Every write that reads derived stock and then decides must run inside
``stock_transaction`` and lock its item with ``acquire_exclusive`` before
the first stock read. Two such operations on the same item are serialized;
operations on different items proceed in parallel.

How the serialization is obtained depends on the database:

- PostgreSQL: ``SELECT ... FOR UPDATE`` row locks on the item and
  transaction-scoped advisory locks for named keys (``orders:sequence``).
  Both are held until commit or rollback.
- Backends without row locking (SQLite): an in-process mutex per key, held
  around the whole atomic block so it also covers commit and rollback.
  The block must therefore be the outermost one. Only valid for a single
  process, which is all SQLite supports anyway.
"""
import hashlib
import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterator, Optional

from django.conf import settings
from django.db import DEFAULT_DB_ALIAS, OperationalError, connections, transaction

from .exceptions import LockTimeout, NotFound

logger = logging.getLogger(__name__)

ORDER_SEQUENCE_KEY = 'orders:sequence'


def item_key(item_id) -> str:
    return f"item:{item_id}"


def key_to_int64(key: str) -> int:
    """
    Map a lock key onto the signed BIGINT range expected by
    ``pg_advisory_xact_lock``.
    """
    digest = hashlib.blake2b(key.encode('utf-8'), digest_size=8).digest()
    value = int.from_bytes(digest, byteorder='big', signed=False)
    if value >= 2 ** 63:
        value -= 2 ** 64
    return value


class KeyedMutex:
    """
    Registry of ``threading.Lock`` objects keyed by string.

    Entries are reference counted and dropped once nobody holds or waits
    on them, so the registry does not grow with the number of items.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refs: Dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
                self._refs[key] = 0
            self._refs[key] += 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        lock = self._checkout(key)
        try:
            acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
            if not acquired:
                raise LockTimeout(
                    f"Failed to acquire lock for key='{key}' within timeout={timeout}s"
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def is_held(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
            return lock is not None and lock.locked()


_process_locks = KeyedMutex()


def _lock_timeout() -> Optional[float]:
    return getattr(settings, 'STOCK_LOCK_TIMEOUT', None)


def uses_row_locks(using: str = DEFAULT_DB_ALIAS) -> bool:
    """Whether the database serializes writers itself (PostgreSQL)."""
    return connections[using].vendor == 'postgresql'


@contextmanager
def stock_transaction(*keys: str, using: str = DEFAULT_DB_ALIAS) -> Iterator[None]:
    """
    Open the atomic block of a stock-affecting operation.

    Args:
        keys: Lock keys the operation will take, e.g. ``item_key(5)``.
            Only consulted on backends without row locking, where they are
            acquired in sorted order before the transaction starts.
        using: Database alias.

    Raises:
        LockTimeout: If ``STOCK_LOCK_TIMEOUT`` elapsed while waiting, or the
            database reported a lock timeout or deadlock.
        RuntimeError: On backends without row locking, if called inside
            another atomic block.
    """
    timeout = _lock_timeout()
    row_locks = uses_row_locks(using)
    with ExitStack() as stack:
        if not row_locks:
            # The mutex is released when this block exits, so this block must
            # be the one that commits.
            if _in_outer_transaction(using):
                raise RuntimeError(
                    "stock_transaction() cannot be nested in another atomic block "
                    f"on {connections[using].vendor}"
                )
            for key in sorted(set(keys)):
                stack.enter_context(_process_locks.hold(key, timeout=timeout))
        try:
            with transaction.atomic(using=using, durable=not row_locks):
                if timeout is not None and row_locks:
                    with connections[using].cursor() as cursor:
                        cursor.execute(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'")
                yield
        except OperationalError as e:
            if _is_lock_failure(e):
                logger.warning(f"Lock failure on {sorted(keys)}: {e}")
                raise LockTimeout(str(e)) from e
            raise


def _in_outer_transaction(using: str) -> bool:
    """
    Whether an atomic block that will commit later is already open.

    Blocks opened by Django's TestCase never commit and are ignored, the
    same rule ``atomic(durable=True)`` applies.
    """
    blocks = connections[using].atomic_blocks
    return bool(blocks) and not blocks[-1]._from_testcase


def _is_lock_failure(error: OperationalError) -> bool:
    # 55P03 lock_not_available, 40P01 deadlock_detected
    cause = error.__cause__
    sqlstate = getattr(cause, 'sqlstate', None) or getattr(cause, 'pgcode', None)
    return sqlstate in ('55P03', '40P01')


def acquire_exclusive(item_id, using: str = DEFAULT_DB_ALIAS):
    """
    Lock a live Item row for the rest of the current transaction.

    Args:
        item_id: Primary key of the item.

    Returns:
        The locked Item.

    Raises:
        NotFound: If the item does not exist or is soft-deleted.
    """
    from inventory.models import Item

    if not connections[using].in_atomic_block:
        raise RuntimeError("acquire_exclusive() must run inside stock_transaction()")

    try:
        item = Item.objects.using(using).select_for_update().get(pk=item_id)
    except (Item.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Item not found with id: {item_id}")

    logger.debug(f"Locked item {item.pk} for update")
    return item


def advisory_lock(key: str, using: str = DEFAULT_DB_ALIAS) -> None:
    """
    Take a transaction-scoped named lock.

    On PostgreSQL this is ``pg_advisory_xact_lock``; elsewhere the keyed
    mutex held by ``stock_transaction`` already covers the key.
    """
    if not uses_row_locks(using):
        if not _process_locks.is_held(key):
            raise RuntimeError(f"advisory_lock({key!r}) needs the key passed to stock_transaction()")
        return
    with connections[using].cursor() as cursor:
        cursor.execute('SELECT pg_advisory_xact_lock(%s)', [key_to_int64(key)])

"""
Tests for locking, error rendering and rate limiting.
"""
import threading
import time
from decimal import Decimal
from unittest import skipIf
from unittest.mock import MagicMock, patch

import redis
from django.db import connection, transaction
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework import status
from rest_framework.test import APIClient

from core import rate_limiting
from core.exceptions import InsufficientStock, LockTimeout, NotFound, api_exception_handler
from core.locking import (
    KeyedMutex,
    _process_locks,
    acquire_exclusive,
    advisory_lock,
    item_key,
    key_to_int64,
    stock_transaction,
)
from inventory.models import InventoryMovement
from inventory.services import create_item, record_movement


class KeyedMutexTestCase(SimpleTestCase):
    """In-process per-key locking."""

    def test_different_keys_do_not_block(self):
        """Holding item:1 must not delay item:2."""
        mutex = KeyedMutex()
        started = threading.Event()
        release = threading.Event()
        results = []

        def holder():
            with mutex.hold('item:1'):
                started.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            self.assertTrue(started.wait(timeout=5))
            t0 = time.monotonic()
            with mutex.hold('item:2', timeout=1.0):
                results.append(time.monotonic() - t0)
        finally:
            release.set()
            thread.join(timeout=5)

        self.assertEqual(len(results), 1)
        self.assertLess(results[0], 0.5)

    def test_same_key_blocks_and_times_out(self):
        mutex = KeyedMutex()
        started = threading.Event()
        release = threading.Event()

        def holder():
            with mutex.hold('item:1'):
                started.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            self.assertTrue(started.wait(timeout=5))
            t0 = time.monotonic()
            with self.assertRaises(LockTimeout):
                with mutex.hold('item:1', timeout=0.2):
                    pass
            self.assertGreaterEqual(time.monotonic() - t0, 0.15)
        finally:
            release.set()
            thread.join(timeout=5)

    def test_same_key_waits_for_holder(self):
        mutex = KeyedMutex()
        order = []
        started = threading.Event()

        def holder():
            with mutex.hold('item:1'):
                started.set()
                time.sleep(0.2)
                order.append('holder')

        thread = threading.Thread(target=holder)
        thread.start()
        self.assertTrue(started.wait(timeout=5))
        with mutex.hold('item:1'):
            order.append('waiter')
        thread.join(timeout=5)

        self.assertEqual(order, ['holder', 'waiter'])

    def test_registry_is_cleaned_up(self):
        mutex = KeyedMutex()
        with mutex.hold('item:1'):
            self.assertTrue(mutex.is_held('item:1'))

        self.assertFalse(mutex.is_held('item:1'))
        self.assertEqual(mutex._locks, {})

    def test_key_to_int64_is_stable_and_in_range(self):
        value = key_to_int64(item_key(42))

        self.assertEqual(value, key_to_int64('item:42'))
        self.assertNotEqual(value, key_to_int64('item:43'))
        self.assertTrue(-2 ** 63 <= value < 2 ** 63)


class StockTransactionTestCase(TestCase):
    """Locking protocol against the database."""

    def test_acquire_exclusive_returns_item(self):
        item = create_item('Pen', Decimal('5.00'))

        with stock_transaction(item_key(item.pk)):
            locked = acquire_exclusive(item.pk)

        self.assertEqual(locked.pk, item.pk)

    def test_acquire_exclusive_unknown_item(self):
        with self.assertRaises(NotFound):
            with stock_transaction(item_key(99999)):
                acquire_exclusive(99999)

    def test_acquire_exclusive_requires_transaction(self):
        item = create_item('Pen', Decimal('5.00'))

        with patch('core.locking.connections') as mock_connections:
            mock_connections.__getitem__.return_value.in_atomic_block = False
            with self.assertRaises(RuntimeError):
                acquire_exclusive(item.pk)

    def test_advisory_lock_requires_declared_key(self):
        with self.assertRaises(RuntimeError):
            with stock_transaction(item_key(1)):
                advisory_lock('orders:sequence')

    def test_failure_rolls_back_writes(self):
        item = create_item('Pen', Decimal('5.00'))

        with self.assertRaises(ValueError):
            with stock_transaction(item_key(item.pk)):
                locked = acquire_exclusive(item.pk)
                locked.name = 'Changed'
                locked.save()
                raise ValueError('boom')

        item.refresh_from_db()
        self.assertEqual(item.name, 'Pen')

    @override_settings(STOCK_LOCK_TIMEOUT=0.1)
    def test_lock_timeout_raises(self):
        started = threading.Event()
        release = threading.Event()

        def holder():
            with _process_locks.hold(item_key(7)):
                started.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            self.assertTrue(started.wait(timeout=5))
            with self.assertRaises(LockTimeout):
                with stock_transaction(item_key(7)):
                    pass
        finally:
            release.set()
            thread.join(timeout=5)

    @skipIf(connection.vendor == 'postgresql', 'row locks last until the outer commit')
    def test_refuses_to_nest_in_outer_transaction(self):
        """
        Given: An atomic block opened by the caller
        When: A stock write runs inside it
        Then: It is refused, the item mutex would be released before the
              outer block commits
        """
        item = create_item('Pen', Decimal('5.00'))

        with transaction.atomic():
            with self.assertRaises(RuntimeError):
                record_movement(item.pk, 5, 'T')
            self.assertFalse(_process_locks.is_held(item_key(item.pk)))

        self.assertFalse(InventoryMovement.all_objects.exists())

    @skipIf(connection.vendor == 'postgresql', 'PostgreSQL uses row locks instead')
    def test_mutex_held_until_commit(self):
        item = create_item('Pen', Decimal('5.00'))

        with stock_transaction(item_key(item.pk)):
            acquire_exclusive(item.pk)
            self.assertTrue(_process_locks.is_held(item_key(item.pk)))

        self.assertFalse(_process_locks.is_held(item_key(item.pk)))


class ExceptionHandlerTestCase(SimpleTestCase):

    def test_insufficient_stock_payload(self):
        exc = InsufficientStock(1, 'Pen', current=2, available=2, requested=5)

        response = api_exception_handler(exc, {'view': None})

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'insufficient_stock')
        self.assertEqual(response.data['available'], 2)
        self.assertEqual(response.data['requested'], 5)
        self.assertIn('Available: 2, Requested: 5', response.data['detail'])

    def test_lock_timeout_is_retryable(self):
        response = api_exception_handler(LockTimeout('busy'), {'view': None})

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response['Retry-After'], '1')

    def test_other_exceptions_fall_through(self):
        self.assertIsNone(api_exception_handler(ValueError('x'), {'view': None}))


class HealthCheckTestCase(TestCase):

    def test_health_reports_database(self):
        response = self.client.get('/health/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'healthy')
        self.assertEqual(response.json()['database'], 'ok')


@override_settings(RATE_LIMIT_ENABLED=True, RATE_LIMIT_MAX_REQUESTS=2, RATE_LIMIT_WINDOW_SECONDS=60)
class RateLimitTestCase(TestCase):
    """Rate limiting on write endpoints, with Redis mocked."""

    def setUp(self):
        self.client = APIClient()
        self.counts = {}
        self.redis = MagicMock()

        def incr(key):
            self.counts[key] = self.counts.get(key, 0) + 1
            return self.counts[key]

        self.redis.incr.side_effect = incr
        self.redis.ttl.return_value = 60

    def _post_item(self):
        return self.client.post('/api/v1/items/', {'name': 'Pen', 'price': '5.00'}, format='json')

    def test_writes_are_limited(self):
        with patch('core.rate_limiting.get_redis_client', return_value=self.redis):
            first = self._post_item()
            second = self._post_item()
            third = self._post_item()

        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(second.status_code, status.HTTP_201_CREATED)
        self.assertEqual(second['X-RateLimit-Remaining'], '0')
        self.assertEqual(third.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(third.json()['error'], 'rate_limited')
        self.assertEqual(third['Retry-After'], '60')
        self.redis.expire.assert_called_once()

    def test_reads_are_not_limited(self):
        with patch('core.rate_limiting.get_redis_client', return_value=self.redis):
            for _ in range(5):
                response = self.client.get('/api/v1/items/')
                self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.redis.incr.assert_not_called()

    def test_fails_open_without_redis(self):
        with patch('core.rate_limiting.get_redis_client', return_value=None):
            for _ in range(3):
                self.assertEqual(self._post_item().status_code, status.HTTP_201_CREATED)

    def test_fails_open_on_redis_error(self):
        self.redis.incr.side_effect = redis.ConnectionError('down')

        with patch('core.rate_limiting.get_redis_client', return_value=self.redis):
            for _ in range(3):
                self.assertEqual(self._post_item().status_code, status.HTTP_201_CREATED)


class RedisReconnectTestCase(SimpleTestCase):
    """A down Redis is not re-dialed on every request."""

    def setUp(self):
        for name, value in (('_redis_client', None), ('_next_connect_attempt', 0.0)):
            patcher = patch.object(rate_limiting, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.redis = MagicMock()
        self.redis.ping.side_effect = redis.ConnectionError('refused')

    def test_failed_connect_is_remembered(self):
        with patch('core.rate_limiting.redis.Redis.from_url', return_value=self.redis) as from_url, \
                patch('core.rate_limiting.time') as clock:
            clock.monotonic.return_value = 1000.0
            for _ in range(5):
                self.assertIsNone(rate_limiting.get_redis_client())

        from_url.assert_called_once()
        self.redis.ping.assert_called_once()

    def test_reconnects_after_interval(self):
        later = 1000.0 + rate_limiting.RECONNECT_INTERVAL_SECONDS

        with patch('core.rate_limiting.redis.Redis.from_url', return_value=self.redis), \
                patch('core.rate_limiting.time') as clock:
            clock.monotonic.side_effect = [1000.0, 1001.0, later]
            self.assertIsNone(rate_limiting.get_redis_client())
            self.assertIsNone(rate_limiting.get_redis_client())
            self.redis.ping.side_effect = None
            self.assertIs(rate_limiting.get_redis_client(), self.redis)

        self.assertEqual(self.redis.ping.call_count, 2)

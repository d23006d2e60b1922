"""
Tests for order transaction logic.

Test Cases:
1. Order created with sufficient stock, rejected otherwise
2. No ledger change on rejection
3. Order numbers are sequential and never reused
4. Updates re-validate against the (new) item
5. Soft delete releases the ordered stock
6. Concurrent orders cannot oversell an item
"""
import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.db import connections
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import InsufficientStock, InvalidArgument, NotFound
from core.locking import ORDER_SEQUENCE_KEY, stock_transaction
from inventory import services as inventory_services
from inventory.services import calculate_current_stock, record_movement
from orders.models import Order
from orders.services import create_order, delete_order, next_order_no, update_order
from orders.tasks import generate_daily_order_report, send_order_confirmation


class OrderTransactionTestCase(TestCase):
    """Test cases for order creation and maintenance."""

    def setUp(self):
        self.pen = inventory_services.create_item('Pen', Decimal('5.00'))
        self.book = inventory_services.create_item('Book', Decimal('20.00'))
        record_movement(self.pen.pk, 5, 'T')
        record_movement(self.pen.pk, 2, 'W')

    def test_pen_scenario(self):
        """
        Given: Pen stock is 3
        When: Ordering 1, then ordering 5
        Then: First succeeds (stock 2), second fails with available=2, requested=5
        """
        self.assertEqual(calculate_current_stock(self.pen.pk), 3)

        order = create_order(self.pen.pk, 1)
        self.assertEqual(order.order_no, 'O1')
        self.assertEqual(calculate_current_stock(self.pen.pk), 2)

        with self.assertRaises(InsufficientStock) as context:
            create_order(self.pen.pk, 5)

        self.assertEqual(context.exception.available, 2)
        self.assertEqual(context.exception.requested, 5)
        self.assertIn('Insufficient stock', str(context.exception))

    def test_no_ledger_change_on_rejection(self):
        with self.assertRaises(InsufficientStock):
            create_order(self.pen.pk, 4)

        self.assertEqual(Order.all_objects.count(), 0)
        self.assertEqual(calculate_current_stock(self.pen.pk), 3)

    def test_sub_cent_price_is_rejected(self):
        """A supplied price that would round to 0.00 must not be stored."""
        with self.assertRaises(InvalidArgument):
            create_order(self.pen.pk, 1, Decimal('0.004'))
        with self.assertRaises(InvalidArgument):
            create_order(self.pen.pk, 1, Decimal('123456789012.00'))

        self.assertEqual(Order.all_objects.count(), 0)
        self.assertEqual(calculate_current_stock(self.pen.pk), 3)

    def test_update_rejects_sub_cent_price(self):
        order = create_order(self.pen.pk, 1)

        with self.assertRaises(InvalidArgument):
            update_order(order.order_no, self.pen.pk, 1, Decimal('0.001'))

        order.refresh_from_db()
        self.assertEqual(order.price, Decimal('5.00'))

    def test_order_with_exact_stock(self):
        create_order(self.pen.pk, 3)

        self.assertEqual(calculate_current_stock(self.pen.pk), 0)

    def test_price_defaults_to_item_price(self):
        order = create_order(self.pen.pk, 1)

        self.assertEqual(order.price, Decimal('5.00'))

    def test_supplied_price_is_kept(self):
        order = create_order(self.pen.pk, 2, Decimal('4.50'))

        self.assertEqual(order.price, Decimal('4.50'))
        self.assertEqual(order.total, Decimal('9.00'))

    def test_item_price_change_does_not_touch_orders(self):
        order = create_order(self.pen.pk, 1)

        inventory_services.update_item(self.pen.pk, 'Pen', '9.99')

        order.refresh_from_db()
        self.assertEqual(order.price, Decimal('5.00'))

    def test_validation_errors(self):
        with self.assertRaises(InvalidArgument):
            create_order(self.pen.pk, 0)
        with self.assertRaises(InvalidArgument):
            create_order(self.pen.pk, 1, Decimal('0'))
        with self.assertRaises(NotFound):
            create_order(99999, 1)

        self.assertEqual(Order.all_objects.count(), 0)

    def test_order_numbers_never_reused(self):
        """
        Given: Orders O1, O2, O3
        When: O2 is deleted and another order created
        Then: The new order is O4
        """
        record_movement(self.pen.pk, 10, 'T')
        numbers = [create_order(self.pen.pk, 1).order_no for _ in range(3)]
        delete_order('O2')
        numbers.append(create_order(self.pen.pk, 1).order_no)

        self.assertEqual(numbers, ['O1', 'O2', 'O3', 'O4'])

    def test_deleting_latest_order_does_not_reuse_number(self):
        create_order(self.pen.pk, 1)
        delete_order('O1')

        self.assertEqual(create_order(self.pen.pk, 1).order_no, 'O2')

    def test_sequence_uses_numeric_maximum(self):
        Order.objects.create(order_no='O9', item=self.book, qty=1, price=Decimal('1.00'))
        Order.objects.create(order_no='O10', item=self.book, qty=1, price=Decimal('1.00'))

        with stock_transaction(ORDER_SEQUENCE_KEY):
            self.assertEqual(next_order_no(), 'O11')

    def test_sequence_counts_deleted_and_skips_malformed_numbers(self):
        Order.objects.create(order_no='O12', item=self.book, qty=1, price=Decimal('1.00'))
        Order.objects.create(order_no='O99x', item=self.book, qty=1, price=Decimal('1.00'))
        delete_order('O12')

        with stock_transaction(ORDER_SEQUENCE_KEY):
            self.assertEqual(next_order_no(), 'O13')

    def test_update_same_item_adds_back_own_qty(self):
        """
        Given: Stock 3, order for 2 (stock 1)
        When: Updating the order to 3
        Then: Allowed, 1 + 2 = 3 available
        """
        order = create_order(self.pen.pk, 2)

        updated = update_order(order.order_no, self.pen.pk, 3)

        self.assertEqual(updated.order_no, order.order_no)
        self.assertEqual(calculate_current_stock(self.pen.pk), 0)

    def test_update_same_item_beyond_available(self):
        order = create_order(self.pen.pk, 2)

        with self.assertRaises(InsufficientStock) as context:
            update_order(order.order_no, self.pen.pk, 4)

        self.assertEqual(context.exception.current, 1)
        self.assertEqual(context.exception.available, 3)
        order.refresh_from_db()
        self.assertEqual(order.qty, 2)

    def test_update_to_other_item(self):
        """
        Given: Order of 2 Pens; Book has 1 in stock
        When: Moving the order to Book with qty 2
        Then: Rejected against Book only (available 1); moving with qty 1 succeeds
              and the Pens go back to Pen's stock
        """
        record_movement(self.book.pk, 1, 'T')
        order = create_order(self.pen.pk, 2)

        with self.assertRaises(InsufficientStock) as context:
            update_order(order.order_no, self.book.pk, 2)
        self.assertEqual(context.exception.available, 1)

        update_order(order.order_no, self.book.pk, 1)

        self.assertEqual(calculate_current_stock(self.pen.pk), 3)
        self.assertEqual(calculate_current_stock(self.book.pk), 0)

    def test_update_price_defaults_to_new_item_price(self):
        record_movement(self.book.pk, 1, 'T')
        order = create_order(self.pen.pk, 1, Decimal('1.00'))

        updated = update_order(order.order_no, self.book.pk, 1)

        self.assertEqual(updated.price, Decimal('20.00'))

    def test_update_not_found(self):
        order = create_order(self.pen.pk, 1)

        with self.assertRaises(NotFound):
            update_order('O999', self.pen.pk, 1)
        with self.assertRaises(NotFound):
            update_order(order.order_no, 99999, 1)
        with self.assertRaises(InvalidArgument):
            update_order(order.order_no, self.pen.pk, -1)

    def test_delete_releases_stock(self):
        order = create_order(self.pen.pk, 3)

        delete_order(order.order_no)

        self.assertEqual(calculate_current_stock(self.pen.pk), 3)
        deleted = Order.all_objects.get(pk=order.order_no)
        self.assertTrue(deleted.is_deleted)
        self.assertIsNotNone(deleted.deleted_at)
        with self.assertRaises(NotFound):
            delete_order(order.order_no)

    def test_confirmation_queued_after_commit(self):
        with patch('orders.tasks.send_order_confirmation.delay') as mock_delay:
            with self.captureOnCommitCallbacks(execute=True):
                order = create_order(self.pen.pk, 1)

        mock_delay.assert_called_once_with(order.order_no)

    def test_confirmation_queue_failure_does_not_fail_order(self):
        with patch('orders.tasks.send_order_confirmation.delay', side_effect=ConnectionError('broker down')):
            with self.captureOnCommitCallbacks(execute=True):
                order = create_order(self.pen.pk, 1)

        self.assertTrue(Order.objects.filter(pk=order.order_no).exists())


class OrderTaskTestCase(TestCase):
    """Test cases for the Celery tasks."""

    def setUp(self):
        self.pen = inventory_services.create_item('Pen', Decimal('5.00'))
        record_movement(self.pen.pk, 10, 'T')

    def test_send_order_confirmation(self):
        order = create_order(self.pen.pk, 2)

        result = send_order_confirmation(order.order_no)

        self.assertEqual(result['status'], 'success')
        self.assertEqual(result['total'], '10.00')

    def test_send_order_confirmation_missing_order(self):
        result = send_order_confirmation('O404')

        self.assertEqual(result['status'], 'skipped')

    def test_daily_report_counts_yesterday(self):
        create_order(self.pen.pk, 2)
        create_order(self.pen.pk, 1, Decimal('4.00'))
        create_order(self.pen.pk, 1)
        Order.objects.exclude(pk='O3').update(created_at=timezone.now() - timedelta(days=1))

        report = generate_daily_order_report()

        self.assertEqual(report['total_orders'], 2)
        self.assertEqual(report['units_sold'], 3)
        self.assertEqual(Decimal(report['revenue']), Decimal('14.00'))


class OrderAPITestCase(TestCase):
    """Test cases for /api/v1/orders/."""

    def setUp(self):
        self.client = APIClient()
        self.pen = inventory_services.create_item('Pen', Decimal('5.00'))
        record_movement(self.pen.pk, 3, 'T')

    def test_create_order(self):
        response = self.client.post('/api/v1/orders/', {'item_id': self.pen.pk, 'qty': 1}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['order_no'], 'O1')
        self.assertEqual(response.data['price'], '5.00')
        self.assertEqual(response.data['item_name'], 'Pen')

    def test_create_order_insufficient_stock(self):
        response = self.client.post('/api/v1/orders/', {'item_id': self.pen.pk, 'qty': 4}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'insufficient_stock')
        self.assertEqual(response.data['available'], 3)

    def test_create_order_validation(self):
        response = self.client.post('/api/v1/orders/', {'item_id': self.pen.pk, 'qty': 0}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post('/api/v1/orders/', {'item_id': 99999, 'qty': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_update_and_delete_order(self):
        order = create_order(self.pen.pk, 1)
        url = f'/api/v1/orders/{order.order_no}/'

        response = self.client.put(url, {'item_id': self.pen.pk, 'qty': 3, 'price': '4.00'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['order_no'], 'O1')
        self.assertEqual(response.data['qty'], 3)
        self.assertEqual(response.data['total'], '12.00')

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_orders(self):
        create_order(self.pen.pk, 1)
        create_order(self.pen.pk, 1)
        delete_order('O1')

        response = self.client.get('/api/v1/orders/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['order_no'], 'O2')


class ConcurrentOrderTestCase(TransactionTestCase):
    """
    Test concurrent order handling to verify per-item locking.
    Uses TransactionTestCase for proper multi-threading support.
    """

    def setUp(self):
        self.item = inventory_services.create_item('Limited Stock Item', Decimal('50.00'))
        self.other = inventory_services.create_item('Other Item', Decimal('10.00'))
        record_movement(self.item.pk, 10, 'T')
        record_movement(self.other.pk, 10, 'T')

    def _run_concurrently(self, *calls):
        barrier = threading.Barrier(len(calls))
        results = []

        def run(fn, args):
            try:
                barrier.wait(timeout=5)
                results.append(fn(*args))
            except InsufficientStock as e:
                results.append(e)
            finally:
                connections.close_all()

        threads = [threading.Thread(target=run, args=call) for call in calls]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
        return results

    def test_concurrent_orders_no_overselling(self):
        """
        Given: 10 units in stock
        When: Two concurrent orders of 10 units each
        Then: Exactly one is created, the other fails with InsufficientStock
        """
        results = self._run_concurrently(
            (create_order, (self.item.pk, 10)),
            (create_order, (self.item.pk, 10)),
        )

        created = [r for r in results if isinstance(r, Order)]
        rejected = [r for r in results if isinstance(r, InsufficientStock)]
        self.assertEqual(len(created), 1)
        self.assertEqual(len(rejected), 1)
        self.assertEqual(calculate_current_stock(self.item.pk), 0)

    def test_concurrent_orders_get_distinct_numbers(self):
        results = self._run_concurrently(
            (create_order, (self.item.pk, 1)),
            (create_order, (self.other.pk, 1)),
        )

        self.assertEqual(sorted(order.order_no for order in results), ['O1', 'O2'])

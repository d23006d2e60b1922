"""
Tests for stock derivation and inventory movement logic.

Test Cases:
1. Stock is derived from live movements and orders only
2. Withdrawals beyond current stock are rejected without writes
3. Movement updates re-validate against the (new) item
4. Soft deletes drop a row's contribution immediately
5. Item lifecycle and REST endpoints
6. Concurrent withdrawals on one item cannot both succeed
"""
import threading
from decimal import Decimal
from io import StringIO

from django.contrib.auth.models import User
from django.core.management import call_command
from django.db import connections
from django.test import TestCase, TransactionTestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import InsufficientStock, InvalidArgument, NotFound
from inventory import services
from inventory.models import Item, InventoryMovement
from orders.models import Order


class StockCalculatorTestCase(TestCase):
    """Test cases for calculate_current_stock and get_stock_levels."""

    def setUp(self):
        self.pen = services.create_item('Pen', Decimal('5.00'))
        self.book = services.create_item('Book', Decimal('20.00'))

    def test_new_item_has_zero_stock(self):
        self.assertEqual(services.calculate_current_stock(self.pen.pk), 0)

    def test_unknown_item_has_zero_stock(self):
        """The calculator performs no existence check."""
        self.assertEqual(services.calculate_current_stock(99999), 0)

    def test_pen_scenario(self):
        """
        Given: Pen with a top up of 5 and a withdrawal of 2
        Then: stock is 3
        """
        services.record_movement(self.pen.pk, 5, 'T')
        services.record_movement(self.pen.pk, 2, 'W')

        self.assertEqual(services.calculate_current_stock(self.pen.pk), 3)

    def test_orders_are_subtracted(self):
        services.record_movement(self.pen.pk, 10, 'T')
        Order.objects.create(order_no='O1', item=self.pen, qty=4, price=Decimal('5.00'))

        self.assertEqual(services.calculate_current_stock(self.pen.pk), 6)

    def test_soft_deleted_rows_are_ignored(self):
        top_up = services.record_movement(self.pen.pk, 10, 'T')
        withdrawal = services.record_movement(self.pen.pk, 3, 'W')
        order = Order.objects.create(order_no='O1', item=self.pen, qty=2, price=Decimal('5.00'))
        self.assertEqual(services.calculate_current_stock(self.pen.pk), 5)

        withdrawal.soft_delete()
        self.assertEqual(services.calculate_current_stock(self.pen.pk), 8)

        order.soft_delete()
        self.assertEqual(services.calculate_current_stock(self.pen.pk), 10)

        top_up.soft_delete()
        self.assertEqual(services.calculate_current_stock(self.pen.pk), 0)

    def test_stock_levels_for_many_items(self):
        services.record_movement(self.pen.pk, 5, 'T')
        services.record_movement(self.pen.pk, 1, 'W')
        services.record_movement(self.book.pk, 7, 'T')
        Order.objects.create(order_no='O1', item=self.book, qty=2, price=Decimal('20.00'))

        levels = services.get_stock_levels([self.pen.pk, self.book.pk, 99999])

        self.assertEqual(levels, {self.pen.pk: 4, self.book.pk: 5, 99999: 0})


class InventoryMovementServiceTestCase(TestCase):
    """Test cases for record / update / delete of movements."""

    def setUp(self):
        self.pen = services.create_item('Pen', Decimal('5.00'))
        self.book = services.create_item('Book', Decimal('20.00'))
        services.record_movement(self.pen.pk, 5, 'T')

    def test_record_rejects_non_positive_qty(self):
        for qty in (0, -1):
            with self.assertRaises(InvalidArgument):
                services.record_movement(self.pen.pk, qty, 'T')

    def test_record_rejects_unknown_kind(self):
        with self.assertRaises(InvalidArgument):
            services.record_movement(self.pen.pk, 1, 'X')

    def test_record_unknown_item(self):
        with self.assertRaises(NotFound):
            services.record_movement(99999, 1, 'T')

    def test_record_on_deleted_item(self):
        services.delete_item(self.book.pk)

        with self.assertRaises(NotFound):
            services.record_movement(self.book.pk, 1, 'T')

    def test_withdrawal_of_exact_stock(self):
        services.record_movement(self.pen.pk, 5, 'W')

        self.assertEqual(services.calculate_current_stock(self.pen.pk), 0)

    def test_withdrawal_beyond_stock_is_rejected(self):
        """
        Given: Pen has 5 in stock
        When: Withdrawing 6
        Then: InsufficientStock, and no movement row is written
        """
        count_before = InventoryMovement.all_objects.count()

        with self.assertRaises(InsufficientStock) as context:
            services.record_movement(self.pen.pk, 6, 'W')

        self.assertEqual(context.exception.available, 5)
        self.assertEqual(context.exception.requested, 6)
        self.assertEqual(InventoryMovement.all_objects.count(), count_before)
        self.assertEqual(services.calculate_current_stock(self.pen.pk), 5)

    def test_top_up_is_never_stock_checked(self):
        services.record_movement(self.book.pk, 1000, 'T')

        self.assertEqual(services.calculate_current_stock(self.book.pk), 1000)

    def test_update_withdrawal_same_item_adds_old_qty_back(self):
        """
        Given: stock 5, then a withdrawal of 4 (stock 1)
        When: Updating that withdrawal to 5
        Then: allowed, since 1 + 4 = 5 are available
        """
        withdrawal = services.record_movement(self.pen.pk, 4, 'W')

        services.update_movement(withdrawal.pk, self.pen.pk, 5, 'W')

        self.assertEqual(services.calculate_current_stock(self.pen.pk), 0)

    def test_update_withdrawal_same_item_beyond_available(self):
        withdrawal = services.record_movement(self.pen.pk, 4, 'W')

        with self.assertRaises(InsufficientStock) as context:
            services.update_movement(withdrawal.pk, self.pen.pk, 6, 'W')

        self.assertEqual(context.exception.current, 1)
        self.assertEqual(context.exception.available, 5)
        withdrawal.refresh_from_db()
        self.assertEqual(withdrawal.qty, 4)

    def test_update_top_up_to_withdrawal_same_item(self):
        """
        Given: top ups of 5 and 3 (stock 8)
        When: Turning the 3 top up into a withdrawal of 3
        Then: availability is 8 - 3 = 5, so it succeeds and stock is 2
        """
        top_up = services.record_movement(self.pen.pk, 3, 'T')

        services.update_movement(top_up.pk, self.pen.pk, 3, 'W')

        self.assertEqual(services.calculate_current_stock(self.pen.pk), 2)

    def test_update_top_up_to_withdrawal_same_item_rejected(self):
        top_up = services.record_movement(self.pen.pk, 3, 'T')

        with self.assertRaises(InsufficientStock) as context:
            services.update_movement(top_up.pk, self.pen.pk, 6, 'W')

        self.assertEqual(context.exception.available, 5)

    def test_update_moves_withdrawal_to_other_item(self):
        """
        Given: Pen stock 5 with a withdrawal of 2 (stock 3); Book stock 2
        When: Moving the withdrawal of 2 to Book
        Then: validated against Book only; Pen back to 5, Book to 0
        """
        services.record_movement(self.book.pk, 2, 'T')
        withdrawal = services.record_movement(self.pen.pk, 2, 'W')

        services.update_movement(withdrawal.pk, self.book.pk, 2, 'W')

        self.assertEqual(services.calculate_current_stock(self.pen.pk), 5)
        self.assertEqual(services.calculate_current_stock(self.book.pk), 0)

    def test_update_to_other_item_does_not_add_back(self):
        """Moving a withdrawal to an item without stock must fail."""
        withdrawal = services.record_movement(self.pen.pk, 2, 'W')

        with self.assertRaises(InsufficientStock) as context:
            services.update_movement(withdrawal.pk, self.book.pk, 2, 'W')

        self.assertEqual(context.exception.available, 0)
        withdrawal.refresh_from_db()
        self.assertEqual(withdrawal.item_id, self.pen.pk)

    def test_update_unknown_movement(self):
        with self.assertRaises(NotFound):
            services.update_movement(99999, self.pen.pk, 1, 'T')

    def test_update_unknown_item(self):
        movement = InventoryMovement.objects.first()

        with self.assertRaises(NotFound):
            services.update_movement(movement.pk, 99999, 1, 'T')

    def test_update_rejects_non_positive_qty(self):
        movement = InventoryMovement.objects.first()

        with self.assertRaises(InvalidArgument):
            services.update_movement(movement.pk, self.pen.pk, 0, 'T')

    def test_delete_withdrawal_restores_stock(self):
        withdrawal = services.record_movement(self.pen.pk, 2, 'W')

        services.delete_movement(withdrawal.pk)

        self.assertEqual(services.calculate_current_stock(self.pen.pk), 5)
        withdrawal = InventoryMovement.all_objects.get(pk=withdrawal.pk)
        self.assertTrue(withdrawal.is_deleted)
        self.assertIsNotNone(withdrawal.deleted_at)

    def test_delete_top_up_is_not_revalidated(self):
        """Deleting a top up may leave stock negative; this is accepted."""
        services.record_movement(self.pen.pk, 4, 'W')
        top_up = InventoryMovement.objects.get(kind='T')

        services.delete_movement(top_up.pk)

        self.assertEqual(services.calculate_current_stock(self.pen.pk), -4)

    def test_deleted_movement_is_not_found(self):
        movement = InventoryMovement.objects.first()
        services.delete_movement(movement.pk)

        with self.assertRaises(NotFound):
            services.get_movement(movement.pk)
        with self.assertRaises(NotFound):
            services.delete_movement(movement.pk)


class ItemServiceTestCase(TestCase):
    """Test cases for the item lifecycle."""

    def test_create_item(self):
        item = services.create_item('  Pen ', '5')

        self.assertEqual(item.name, 'Pen')
        self.assertEqual(item.price, Decimal('5.00'))
        self.assertFalse(item.is_deleted)

    def test_create_item_rejects_bad_price(self):
        for price in ('0', '-1.00', 'abc'):
            with self.assertRaises(InvalidArgument):
                services.create_item('Pen', price)

    def test_create_item_rejects_sub_cent_price(self):
        """A positive price below one cent must not be rounded down to 0.00."""
        for price in (Decimal('0.001'), Decimal('1.005'), '0.004'):
            with self.assertRaises(InvalidArgument):
                services.create_item('Tiny', price)

        self.assertFalse(Item.all_objects.exists())

    def test_create_item_rejects_price_beyond_column(self):
        with self.assertRaises(InvalidArgument):
            services.create_item('Big', Decimal('123456789012.00'))
        with self.assertRaises(InvalidArgument):
            services.create_item('Big', Decimal('100000000.00'))

        item = services.create_item('Max', Decimal('99999999.99'))
        self.assertEqual(item.price, Decimal('99999999.99'))

    def test_create_item_accepts_trailing_zeros(self):
        item = services.create_item('Pen', '1.500')

        self.assertEqual(item.price, Decimal('1.50'))

    def test_update_item_rejects_sub_cent_price(self):
        item = services.create_item('Pen', '5.00')

        with self.assertRaises(InvalidArgument):
            services.update_item(item.pk, 'Pen', Decimal('0.001'))

        item.refresh_from_db()
        self.assertEqual(item.price, Decimal('5.00'))

    def test_create_item_requires_name(self):
        with self.assertRaises(InvalidArgument):
            services.create_item('   ', '1.00')

    def test_update_item(self):
        item = services.create_item('Pen', '5.00')

        services.update_item(item.pk, 'Blue Pen', '6.50')

        item.refresh_from_db()
        self.assertEqual(item.name, 'Blue Pen')
        self.assertEqual(item.price, Decimal('6.50'))

    def test_update_unknown_item(self):
        with self.assertRaises(NotFound):
            services.update_item(99999, 'Pen', '1.00')

    def test_delete_item_keeps_ledger_rows(self):
        """
        Given: An item with a movement and an order
        When: The item is soft-deleted
        Then: It disappears from default queries, its rows stay and still
              resolve the item
        """
        item = services.create_item('Pen', '5.00')
        movement = services.record_movement(item.pk, 5, 'T')
        Order.objects.create(order_no='O1', item=item, qty=1, price=Decimal('5.00'))

        services.delete_item(item.pk)

        self.assertFalse(Item.objects.filter(pk=item.pk).exists())
        self.assertTrue(Item.all_objects.filter(pk=item.pk).exists())
        movement = InventoryMovement.objects.get(pk=movement.pk)
        self.assertEqual(movement.item.name, 'Pen')
        self.assertEqual(Order.objects.get(pk='O1').item.name, 'Pen')
        self.assertEqual(services.calculate_current_stock(item.pk), 4)

        with self.assertRaises(NotFound):
            services.get_item(item.pk)
        with self.assertRaises(NotFound):
            services.delete_item(item.pk)


class ItemAdminTestCase(TestCase):
    """Admin deletion of items that already have ledger history."""

    def setUp(self):
        self.admin = User.objects.create_superuser('admin', 'admin@example.com', 'secret')
        self.client.force_login(self.admin)
        self.item = services.create_item('Pen', '5.00')
        self.movement = services.record_movement(self.item.pk, 5, 'T')
        self.url = reverse('admin:inventory_item_delete', args=[self.item.pk])

    def test_delete_confirmation_is_not_blocked(self):
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context['protected'], [])

    def test_delete_soft_deletes_item_and_keeps_movements(self):
        response = self.client.post(self.url, {'post': 'yes'})

        self.assertEqual(response.status_code, 302)
        self.assertFalse(Item.objects.filter(pk=self.item.pk).exists())
        self.assertTrue(Item.all_objects.get(pk=self.item.pk).is_deleted)
        self.assertTrue(InventoryMovement.objects.filter(pk=self.movement.pk).exists())
        self.assertEqual(services.calculate_current_stock(self.item.pk), 5)


class InventoryAPITestCase(TestCase):
    """Test cases for /api/v1/items/ and /api/v1/inventories/."""

    def setUp(self):
        self.client = APIClient()
        self.pen = services.create_item('Pen', Decimal('5.00'))

    def test_create_item(self):
        response = self.client.post('/api/v1/items/', {'name': 'Book', 'price': '20.00'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['name'], 'Book')
        self.assertEqual(response.data['current_stock'], 0)

    def test_create_item_rejects_zero_price(self):
        response = self.client.post('/api/v1/items/', {'name': 'Book', 'price': '0'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_items_with_stock(self):
        services.record_movement(self.pen.pk, 5, 'T')
        services.record_movement(self.pen.pk, 2, 'W')
        services.create_item('Book', '20.00')

        response = self.client.get('/api/v1/items/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 2)
        stocks = {row['name']: row['current_stock'] for row in response.data['results']}
        self.assertEqual(stocks, {'Pen': 3, 'Book': 0})

    def test_item_detail_update_delete(self):
        url = f'/api/v1/items/{self.pen.pk}/'

        response = self.client.put(url, {'name': 'Pen', 'price': '7.25'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['price'], '7.25')

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'not_found')

    def test_record_movement(self):
        response = self.client.post(
            '/api/v1/inventories/',
            {'item_id': self.pen.pk, 'qty': 5, 'type': 'T'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['type'], 'T')
        self.assertEqual(response.data['item_name'], 'Pen')

    def test_withdrawal_conflict_payload(self):
        services.record_movement(self.pen.pk, 2, 'T')

        response = self.client.post(
            '/api/v1/inventories/',
            {'item_id': self.pen.pk, 'qty': 3, 'type': 'W'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'insufficient_stock')
        self.assertEqual(response.data['available'], 2)
        self.assertEqual(response.data['requested'], 3)

    def test_movement_validation_errors(self):
        response = self.client.post(
            '/api/v1/inventories/',
            {'item_id': self.pen.pk, 'qty': 0, 'type': 'T'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post(
            '/api/v1/inventories/',
            {'item_id': self.pen.pk, 'qty': 1, 'type': 'X'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_movement_unknown_item(self):
        response = self.client.post(
            '/api/v1/inventories/',
            {'item_id': 99999, 'qty': 1, 'type': 'T'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_movement_update_and_delete(self):
        movement = services.record_movement(self.pen.pk, 5, 'T')
        url = f'/api/v1/inventories/{movement.pk}/'

        response = self.client.put(url, {'item_id': self.pen.pk, 'qty': 8, 'type': 'T'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['qty'], 8)

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        response = self.client.get('/api/v1/inventories/')
        self.assertEqual(response.data['count'], 0)


class SeedDataTestCase(TestCase):
    """Test the seed_data management command."""

    def test_seed_data(self):
        call_command('seed_data', stdout=StringIO())

        self.assertEqual(Item.objects.count(), 7)
        self.assertEqual(InventoryMovement.objects.count(), 9)
        self.assertEqual(Order.objects.count(), 10)

        pen = Item.objects.get(name='Pen')
        self.assertEqual(services.calculate_current_stock(pen.pk), 1)
        self.assertEqual(Order.objects.get(pk='O2').price, Decimal('20.00'))

    def test_seed_data_clear(self):
        call_command('seed_data', stdout=StringIO())
        call_command('seed_data', '--clear', stdout=StringIO())

        self.assertEqual(Item.all_objects.count(), 7)
        self.assertEqual(Order.all_objects.count(), 10)


class ConcurrentWithdrawalTestCase(TransactionTestCase):
    """
    Test concurrent withdrawals to verify per-item locking.
    Uses TransactionTestCase for proper multi-threading support.
    """

    def setUp(self):
        self.item = services.create_item('Limited Stock Item', Decimal('50.00'))
        services.record_movement(self.item.pk, 10, 'T')

    def test_concurrent_full_withdrawals_one_succeeds(self):
        """
        Given: 10 units in stock
        When: Two concurrent withdrawals of 10 units each
        Then: Exactly one succeeds, the other fails with InsufficientStock
        """
        barrier = threading.Barrier(2)
        results = []

        def withdraw():
            try:
                barrier.wait(timeout=5)
                services.record_movement(self.item.pk, 10, 'W')
                results.append('ok')
            except InsufficientStock:
                results.append('insufficient')
            finally:
                connections.close_all()

        threads = [threading.Thread(target=withdraw) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        self.assertEqual(sorted(results), ['insufficient', 'ok'])
        self.assertEqual(services.calculate_current_stock(self.item.pk), 0)
        self.assertEqual(
            InventoryMovement.objects.filter(item=self.item, kind='W').count(), 1
        )

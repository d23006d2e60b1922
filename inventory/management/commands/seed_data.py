"""
Management command to seed the database with the sample catalog.

Generates:
- 7 items (Pen, Book, Bag, Pencil, Shoe, Box, Cap)
- 9 inventory movements (8 top ups, 1 withdrawal)
- 10 orders (O1..O10)

Every row goes through the service layer, so stock rules apply.

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
from decimal import Decimal

from django.core.management.base import BaseCommand

from inventory import services
from inventory.models import Item, InventoryMovement

ITEMS = [
    ('Pen', '5.00'),
    ('Book', '20.00'),
    ('Bag', '150.00'),
    ('Pencil', '3.00'),
    ('Shoe', '300.00'),
    ('Box', '75.00'),
    ('Cap', '50.00'),
]

MOVEMENTS = [
    ('Pen', 5, 'T'),
    ('Book', 10, 'T'),
    ('Bag', 3, 'T'),
    ('Pencil', 8, 'T'),
    ('Shoe', 2, 'T'),
    ('Box', 4, 'T'),
    ('Cap', 6, 'T'),
    ('Pen', 2, 'W'),
    ('Book', 3, 'T'),
]

# (item, qty, order total); unit price is total / qty
ORDERS = [
    ('Pen', 1, '5.00'),
    ('Book', 2, '40.00'),
    ('Bag', 1, '150.00'),
    ('Pencil', 3, '9.00'),
    ('Shoe', 1, '300.00'),
    ('Box', 1, '75.00'),
    ('Cap', 2, '100.00'),
    ('Pen', 1, '5.00'),
    ('Book', 1, '20.00'),
    ('Cap', 1, '50.00'),
]


class Command(BaseCommand):
    help = 'Seed the database with sample items, inventory movements and orders'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()
        elif Item.all_objects.exists():
            self.stdout.write(self.style.WARNING('Items already exist, skipping (use --clear to reseed).'))
            return

        self.stdout.write('Starting database seeding...')

        # No outer transaction, stock_transaction must be the outermost block
        items = self._create_items()
        self._create_movements(items)
        self._create_orders(items)

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        """Hard delete all rows, tombstoned ones included."""
        from orders.models import Order

        Order.all_objects.all().delete()
        InventoryMovement.all_objects.all().delete()
        Item.all_objects.all().delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _create_items(self):
        items = {}
        for name, price in ITEMS:
            items[name] = services.create_item(name, Decimal(price))
        self.stdout.write(self.style.SUCCESS(f'Created {len(items)} items'))
        return items

    def _create_movements(self, items):
        for name, qty, kind in MOVEMENTS:
            services.record_movement(items[name].pk, qty, kind)
        self.stdout.write(self.style.SUCCESS(f'Created {len(MOVEMENTS)} inventory movements'))

    def _create_orders(self, items):
        from orders.services import create_order

        for name, qty, total in ORDERS:
            order = create_order(items[name].pk, qty, Decimal(total) / qty)
            self.stdout.write(f'  Created order {order.order_no}: {qty}x {name}')
        self.stdout.write(self.style.SUCCESS(f'Created {len(ORDERS)} orders'))

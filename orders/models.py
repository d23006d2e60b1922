"""
Order Models - Sales that consume item stock.

Order numbers have the form ``O<n>`` and are assigned by
``orders.services.next_order_no``. They are never reused, soft-deleted
orders still count when the next number is derived.
"""
from decimal import Decimal

from django.core.validators import MinValueValidator, RegexValidator
from django.db import models

from core.models import SoftDeleteModel
from inventory.models import Item

ORDER_NO_PREFIX = 'O'


class Order(SoftDeleteModel):
    """
    Order entity, one sale of a single item.

    Stores the unit price at time of order to preserve historical pricing.
    """
    order_no = models.CharField(
        primary_key=True,
        max_length=50,
        editable=False,
        validators=[RegexValidator(r'^O\d+$', 'Order number must look like O<n>')],
        help_text="Order number (O1, O2, O3, ...)"
    )
    item = models.ForeignKey(
        Item,
        on_delete=models.PROTECT,
        related_name='orders',
        help_text="Ordered item"
    )
    qty = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Quantity ordered"
    )
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Price per unit at time of order"
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta(SoftDeleteModel.Meta):
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(qty__gt=0),
                name='order_qty_positive'
            ),
        ]
        indexes = [
            models.Index(fields=['item', 'is_deleted'], name='order_item_deleted_idx'),
        ]

    def __str__(self):
        return f"Order {self.order_no} - {self.qty}x {self.item.name}"

    @property
    def total(self) -> Decimal:
        return self.qty * self.price

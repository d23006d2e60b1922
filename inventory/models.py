"""
Inventory Models - Catalog items and the stock movement ledger.

Models:
    - Item: Catalog entry with a display name and unit price
    - InventoryMovement: One stock adjustment (top up or withdrawal)

Stock is never stored on Item. It is derived from the non-deleted
movements and orders of the item, see ``inventory.services``.
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from core.models import SoftDeleteModel


class Item(SoftDeleteModel):
    """
    Item entity representing a product whose stock is tracked.
    """
    name = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Item display name"
    )
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Current unit price (must be positive)"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta(SoftDeleteModel.Meta):
        verbose_name = 'Item'
        verbose_name_plural = 'Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.name} (${self.price})"


class InventoryMovement(SoftDeleteModel):
    """
    InventoryMovement entity, one discrete stock adjustment.

    Quantity is always positive; the direction is carried by ``kind``.
    """

    class Kind(models.TextChoices):
        TOP_UP = 'T', 'Top Up'
        WITHDRAWAL = 'W', 'Withdrawal'

    item = models.ForeignKey(
        Item,
        on_delete=models.PROTECT,
        related_name='movements',
        help_text="Item whose stock this movement adjusts"
    )
    qty = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Quantity moved"
    )
    kind = models.CharField(
        max_length=1,
        choices=Kind.choices,
        help_text="T = Top Up, W = Withdrawal"
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta(SoftDeleteModel.Meta):
        verbose_name = 'Inventory Movement'
        verbose_name_plural = 'Inventory Movements'
        ordering = ['-id']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(qty__gt=0),
                name='inventory_movement_qty_positive'
            ),
            models.CheckConstraint(
                condition=models.Q(kind__in=['T', 'W']),
                name='inventory_movement_kind_valid'
            ),
        ]
        indexes = [
            models.Index(fields=['item', 'is_deleted', 'kind'], name='inv_movement_item_kind_idx'),
        ]

    def __str__(self):
        return f"{self.get_kind_display()} {self.qty}x {self.item.name}"

    @property
    def signed_qty(self) -> int:
        """Effect of this movement on derived stock."""
        return self.qty if self.kind == self.Kind.TOP_UP else -self.qty

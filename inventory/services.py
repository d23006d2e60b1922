"""
Inventory Service Layer - stock derivation and validated ledger writes.

Every stock-affecting write follows the same shape:
1. Reject bad arguments before touching the database
2. Open ``stock_transaction`` and lock the target item (select_for_update)
3. Recompute current stock from the ledger inside that transaction
4. Validate the proposed change against it
5. Write the row; commit releases the lock, any exception rolls back
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable

from django.db.models import Case, F, IntegerField, Sum, Value, When
from django.db.models.functions import Coalesce

from core.exceptions import InsufficientStock, InvalidArgument, NotFound
from core.locking import acquire_exclusive, item_key, stock_transaction
from .models import Item, InventoryMovement

logger = logging.getLogger(__name__)

Kind = InventoryMovement.Kind

# Bounds of DecimalField(max_digits=10, decimal_places=2)
PRICE_STEP = Decimal('0.01')
MAX_PRICE = Decimal('99999999.99')

_SIGNED_QTY = Case(
    When(kind=Kind.TOP_UP, then=F('qty')),
    default=-F('qty'),
    output_field=IntegerField(),
)


# =============================================================================
# Stock Calculator
# =============================================================================

def calculate_current_stock(item_id: int) -> int:
    """
    Derive the current stock of an item from its ledger rows.

    stock = sum(top ups) - sum(withdrawals) - sum(orders), deleted rows
    excluded. No existence check: an unknown id yields 0. The result is
    only trustworthy for a decision while the item lock is held.
    """
    from orders.models import Order

    movement_stock = InventoryMovement.objects.filter(item_id=item_id).aggregate(
        total=Coalesce(Sum(_SIGNED_QTY), Value(0))
    )['total']
    ordered_qty = Order.objects.filter(item_id=item_id).aggregate(
        total=Coalesce(Sum('qty'), Value(0))
    )['total']
    return movement_stock - ordered_qty


def get_stock_levels(item_ids: Iterable[int]) -> Dict[int, int]:
    """
    Current stock for several items in two grouped queries.

    Read path only: no locks are taken, values may be stale by the time
    they are rendered.
    """
    from orders.models import Order

    item_ids = list(item_ids)
    levels = {item_id: 0 for item_id in item_ids}

    movement_rows = InventoryMovement.objects.filter(item_id__in=item_ids).values(
        'item_id'
    ).annotate(total=Sum(_SIGNED_QTY))
    for row in movement_rows:
        levels[row['item_id']] += row['total'] or 0

    order_rows = Order.objects.filter(item_id__in=item_ids).values(
        'item_id'
    ).annotate(total=Sum('qty'))
    for row in order_rows:
        levels[row['item_id']] -= row['total'] or 0

    return levels


# =============================================================================
# Argument checks
# =============================================================================

def validate_qty(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise InvalidArgument(f"Quantity must be an integer, got: {qty!r}")
    if qty <= 0:
        raise InvalidArgument(f"Quantity must be positive, got: {qty}")
    return qty


def validate_price(price) -> Decimal:
    """
    Coerce a price to a 2-place Decimal that fits ``DecimalField(10, 2)``.

    Sub-cent digits are rejected rather than rounded.
    """
    try:
        price = Decimal(str(price))
    except (InvalidOperation, ValueError):
        raise InvalidArgument(f"Price must be a decimal number, got: {price!r}")
    if not price.is_finite():
        raise InvalidArgument(f"Price must be a finite number, got: {price}")
    if price <= 0:
        raise InvalidArgument(f"Price must be greater than 0, got: {price}")
    if price > MAX_PRICE:
        raise InvalidArgument(f"Price must not exceed {MAX_PRICE}, got: {price}")
    quantized = price.quantize(PRICE_STEP)
    if quantized != price:
        raise InvalidArgument(f"Price must have at most 2 decimal places, got: {price}")
    return quantized


def validate_kind(kind) -> str:
    if kind not in Kind.values:
        raise InvalidArgument(f"Type must be T or W, got: {kind!r}")
    return kind


# =============================================================================
# Inventory movements
# =============================================================================

def record_movement(item_id: int, qty: int, kind: str) -> InventoryMovement:
    """
    Record a top up or withdrawal for an item.

    Args:
        item_id: Item to adjust
        qty: Positive quantity
        kind: 'T' (top up) or 'W' (withdrawal)

    Returns:
        The created InventoryMovement

    Raises:
        InvalidArgument: If qty is not positive or kind is unknown
        NotFound: If the item does not exist
        InsufficientStock: If a withdrawal exceeds current stock
    """
    validate_qty(qty)
    validate_kind(kind)

    with stock_transaction(item_key(item_id)):
        item = acquire_exclusive(item_id)

        if kind == Kind.WITHDRAWAL:
            current_stock = calculate_current_stock(item.pk)
            if current_stock < qty:
                logger.warning(
                    f"Withdrawal of {qty} rejected for item {item.pk}: "
                    f"only {current_stock} in stock"
                )
                raise InsufficientStock(item.pk, item.name, current_stock, current_stock, qty)

        movement = InventoryMovement.objects.create(item=item, qty=qty, kind=kind)

    logger.info(f"Recorded movement #{movement.pk}: {kind}{qty} for item {item.pk}")
    return movement


def update_movement(movement_id: int, item_id: int, qty: int, kind: str) -> InventoryMovement:
    """
    Overwrite item, quantity and kind of an existing movement.

    Only the new item is locked and validated. When the item is unchanged
    the old row's effect is still inside the freshly computed stock, so it
    is reversed before the new withdrawal is checked. When the item changes
    the old contribution simply leaves with the old item.

    Raises:
        InvalidArgument: If qty is not positive or kind is unknown
        NotFound: If the movement or the new item does not exist
        InsufficientStock: If the new withdrawal exceeds available stock
    """
    validate_qty(qty)
    validate_kind(kind)

    with stock_transaction(item_key(item_id)):
        movement = get_movement(movement_id)
        item = acquire_exclusive(item_id)
        # Re-read under the lock, a concurrent update may have moved it
        movement.refresh_from_db()
        if movement.is_deleted:
            raise NotFound(f"Inventory transaction not found with id: {movement_id}")

        if kind == Kind.WITHDRAWAL:
            current_stock = calculate_current_stock(item.pk)
            available = current_stock
            if movement.item_id == item.pk:
                available -= movement.signed_qty

            if available < qty:
                logger.warning(
                    f"Update of movement #{movement.pk} rejected: "
                    f"available {available}, requested {qty}"
                )
                raise InsufficientStock(item.pk, item.name, current_stock, available, qty)

        movement.item = item
        movement.qty = qty
        movement.kind = kind
        movement.save(update_fields=['item', 'qty', 'kind', 'updated_at'])

    logger.info(f"Updated movement #{movement.pk}: {kind}{qty} for item {item.pk}")
    return movement


def delete_movement(movement_id: int) -> None:
    """
    Soft delete a movement. Stock is not re-validated.
    """
    movement = get_movement(movement_id)
    movement.soft_delete()
    logger.info(f"Soft-deleted movement #{movement.pk}")


def get_movement(movement_id: int) -> InventoryMovement:
    try:
        return InventoryMovement.objects.select_related('item').get(pk=movement_id)
    except (InventoryMovement.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Inventory transaction not found with id: {movement_id}")


def list_movements():
    return InventoryMovement.objects.select_related('item').order_by('-id')


# =============================================================================
# Items
# =============================================================================

def create_item(name: str, price) -> Item:
    """Create a catalog item. New items start with zero stock."""
    if not name or not str(name).strip():
        raise InvalidArgument("Name is required")
    item = Item.objects.create(name=str(name).strip(), price=validate_price(price))
    logger.info(f"Created item #{item.pk} {item.name} at {item.price}")
    return item


def update_item(item_id: int, name: str, price) -> Item:
    """
    Overwrite name and price. Ledger rows are left untouched; orders keep
    the price they were created with.
    """
    if not name or not str(name).strip():
        raise InvalidArgument("Name is required")
    price = validate_price(price)

    item = get_item(item_id)
    item.name = str(name).strip()
    item.price = price
    item.save(update_fields=['name', 'price', 'updated_at'])
    logger.info(f"Updated item #{item.pk}")
    return item


def delete_item(item_id: int) -> None:
    """
    Soft delete an item. Its movements and orders stay in the ledger and
    outstanding stock is not checked.
    """
    item = get_item(item_id)
    item.soft_delete()
    logger.info(f"Soft-deleted item #{item.pk}")


def get_item(item_id: int) -> Item:
    try:
        return Item.objects.get(pk=item_id)
    except (Item.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Item not found with id: {item_id}")


def list_items():
    return Item.objects.order_by('id')

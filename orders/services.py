"""
Order Service Layer - Atomic order creation and maintenance.

Create / update follow the locking pattern of ``inventory.services``:
1. Validate arguments (no lock taken yet)
2. Lock the item row with select_for_update()
3. Recompute stock for that item inside the same transaction
4. Reject with InsufficientStock, or write and commit
5. After commit, queue the confirmation task
"""
import logging
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import BigIntegerField, Max
from django.db.models.functions import Cast, Substr

from core.exceptions import InsufficientStock, NotFound
from core.locking import (
    ORDER_SEQUENCE_KEY,
    acquire_exclusive,
    advisory_lock,
    item_key,
    stock_transaction,
)
from inventory.services import calculate_current_stock, validate_price, validate_qty
from .models import ORDER_NO_PREFIX, Order

logger = logging.getLogger(__name__)

_ORDER_NO_PATTERN = rf'^{ORDER_NO_PREFIX}[0-9]+$'


def next_order_no() -> str:
    """
    Derive the next order number from the highest existing one.

    Soft-deleted orders count too, so numbers are never handed out twice.
    Must run inside the order-creation ``stock_transaction`` that was
    opened with ``ORDER_SEQUENCE_KEY``.
    """
    advisory_lock(ORDER_SEQUENCE_KEY)

    highest = Order.all_objects.filter(
        order_no__regex=_ORDER_NO_PATTERN
    ).aggregate(
        highest=Max(Cast(Substr('order_no', len(ORDER_NO_PREFIX) + 1), BigIntegerField()))
    )['highest'] or 0
    return f"{ORDER_NO_PREFIX}{highest + 1}"


def _resolve_price(price, item) -> Decimal:
    if price is None:
        return item.price
    return validate_price(price)


def create_order(item_id: int, qty: int, price=None) -> Order:
    """
    Create an order after checking the item has enough stock.

    Args:
        item_id: Item being sold
        qty: Positive quantity
        price: Unit price; defaults to the item's current price

    Returns:
        The created Order

    Raises:
        InvalidArgument: If qty or price is not positive
        NotFound: If the item does not exist
        InsufficientStock: If qty exceeds current stock
    """
    validate_qty(qty)
    if price is not None:
        validate_price(price)

    with stock_transaction(item_key(item_id), ORDER_SEQUENCE_KEY):
        item = acquire_exclusive(item_id)

        current_stock = calculate_current_stock(item.pk)
        if current_stock < qty:
            logger.warning(
                f"Order for {qty} of item {item.pk} rejected: "
                f"only {current_stock} in stock"
            )
            raise InsufficientStock(item.pk, item.name, current_stock, current_stock, qty)

        order = Order.objects.create(
            order_no=next_order_no(),
            item=item,
            qty=qty,
            price=_resolve_price(price, item),
        )
        transaction.on_commit(lambda: _queue_confirmation(order.order_no))

    logger.info(f"Created order {order.order_no}: {qty}x item {item.pk} @ {order.price}")
    return order


def update_order(order_no: str, item_id: int, qty: int, price=None) -> Order:
    """
    Change item, quantity and price of an order. The order number is kept.

    When the item is unchanged the order's own quantity is added back before
    validating, since it is already subtracted in the current stock. When
    the item changes only the new item is locked and checked.

    Raises:
        InvalidArgument: If qty or price is not positive
        NotFound: If the order or the new item does not exist
        InsufficientStock: If qty exceeds available stock
    """
    validate_qty(qty)
    if price is not None:
        validate_price(price)

    with stock_transaction(item_key(item_id)):
        order = get_order(order_no)
        item = acquire_exclusive(item_id)
        order.refresh_from_db()
        if order.is_deleted:
            raise NotFound(f"Order not found with order number: {order_no}")

        current_stock = calculate_current_stock(item.pk)
        available = current_stock
        if order.item_id == item.pk:
            available += order.qty

        if available < qty:
            logger.warning(
                f"Update of order {order.order_no} rejected: "
                f"available {available}, requested {qty}"
            )
            raise InsufficientStock(item.pk, item.name, current_stock, available, qty)

        order.item = item
        order.qty = qty
        order.price = _resolve_price(price, item)
        order.save(update_fields=['item', 'qty', 'price', 'updated_at'])

    logger.info(f"Updated order {order.order_no}: {qty}x item {item.pk} @ {order.price}")
    return order


def delete_order(order_no: str) -> None:
    """Soft delete an order. Stock is not re-validated."""
    order = get_order(order_no)
    order.soft_delete()
    logger.info(f"Soft-deleted order {order.order_no}")


def get_order(order_no: str) -> Order:
    try:
        return Order.objects.select_related('item').get(pk=order_no)
    except Order.DoesNotExist:
        raise NotFound(f"Order not found with order number: {order_no}")


def list_orders():
    return Order.objects.select_related('item').order_by('-created_at', '-order_no')


def _queue_confirmation(order_no: str) -> Optional[str]:
    try:
        from .tasks import send_order_confirmation
        result = send_order_confirmation.delay(order_no)
        logger.info(f"Triggered confirmation task for order {order_no}")
        return result.id
    except Exception as e:
        # Don't fail the order if task queuing fails
        logger.error(f"Failed to queue confirmation task: {e}")
        return None

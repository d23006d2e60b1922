"""
Celery tasks for order processing.

Tasks:
    - send_order_confirmation: Async notification after an order commits
    - generate_daily_order_report: Totals of yesterday's live orders
"""
import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(ConnectionError,),
    retry_backoff=True
)
def send_order_confirmation(self, order_no: str):
    """
    Async task triggered after an order has been committed.

    Args:
        order_no: Number of the created order

    Returns:
        Dict with confirmation details
    """
    from orders.models import Order

    try:
        order = Order.objects.select_related('item').get(pk=order_no)
    except Order.DoesNotExist:
        # Deleted between commit and task execution
        logger.warning(f"Order {order_no} not found for confirmation")
        return {'status': 'skipped', 'message': f'Order {order_no} not found'}

    logger.info(
        f"[CELERY] Order {order.order_no} confirmed: {order.qty}x {order.item.name} "
        f"@ ${order.price} = ${order.total}"
    )

    return {
        'status': 'success',
        'order_no': order.order_no,
        'total': str(order.total),
        'message': f'Confirmation sent for order {order_no}'
    }


@shared_task
def generate_daily_order_report():
    """
    Generate yesterday's order statistics.

    Can be scheduled via Celery Beat for daily execution.
    """
    from datetime import timedelta

    from django.db.models import Count, DecimalField, ExpressionWrapper, F, Sum
    from django.utils import timezone

    from orders.models import Order

    yesterday = timezone.now().date() - timedelta(days=1)

    stats = Order.objects.filter(created_at__date=yesterday).aggregate(
        total_orders=Count('order_no'),
        units_sold=Sum('qty'),
        revenue=Sum(ExpressionWrapper(
            F('qty') * F('price'),
            output_field=DecimalField(max_digits=14, decimal_places=2)
        )),
    )

    logger.info(
        f"DAILY ORDER REPORT - {yesterday}: {stats['total_orders']} orders, "
        f"{stats['units_sold'] or 0} units, revenue ${stats['revenue'] or 0}"
    )
    return {
        'date': yesterday.isoformat(),
        'total_orders': stats['total_orders'],
        'units_sold': stats['units_sold'] or 0,
        'revenue': str(stats['revenue'] or 0),
    }

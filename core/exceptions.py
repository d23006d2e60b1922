"""
Error taxonomy for stock-affecting operations.

Exceptions:
    - InvalidArgument: non-positive quantity or price, unknown movement kind
    - NotFound: item, movement or order does not resolve to a live row
    - InsufficientStock: a withdrawal or order would drive stock negative
    - LockTimeout: lock wait exceeded or deadlock detected (transient)

All of them abort the enclosing transaction. ``api_exception_handler``
renders them as JSON for the REST layer.
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class StockLedgerError(Exception):
    """Base class for all domain errors raised by the orchestrators."""
    code = 'stock_ledger_error'
    status_code = status.HTTP_400_BAD_REQUEST

    def as_payload(self) -> dict:
        return {'error': self.code, 'detail': str(self)}


class InvalidArgument(StockLedgerError):
    code = 'invalid_argument'
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(StockLedgerError):
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientStock(StockLedgerError):
    """Raised when there's not enough stock to cover a withdrawal or order."""
    code = 'insufficient_stock'
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, item_id: int, item_name: str, current: int, available: int, requested: int):
        self.item_id = item_id
        self.item_name = item_name
        self.current = current
        self.available = available
        self.requested = requested
        message = (
            f"Insufficient stock for item: {item_name}. "
            f"Available: {available}, Requested: {requested}"
        )
        if current != available:
            message += f" (Current: {current})"
        super().__init__(message)

    def as_payload(self) -> dict:
        payload = super().as_payload()
        payload.update({
            'item_id': self.item_id,
            'current': self.current,
            'available': self.available,
            'requested': self.requested,
        })
        return payload


class LockTimeout(StockLedgerError):
    """
    Raised when an exclusive lock could not be obtained in time, or the
    database aborted the transaction to break a deadlock. Callers may retry.
    """
    code = 'lock_timeout'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def api_exception_handler(exc, context):
    """
    DRF exception handler that understands the domain errors.

    Falls back to DRF's default handling for everything else.
    """
    if isinstance(exc, StockLedgerError):
        view = context.get('view')
        logger.info(f"{type(exc).__name__} in {type(view).__name__ if view else 'view'}: {exc}")
        headers = {'Retry-After': '1'} if isinstance(exc, LockTimeout) else None
        return Response(exc.as_payload(), status=exc.status_code, headers=headers)
    return exception_handler(exc, context)

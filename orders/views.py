"""
Order API Views.

Implements:
- GET /orders/ - List live orders, newest first
- POST /orders/ - Create order after stock validation
- GET/PUT/DELETE /orders/{order_no}/ - Order detail, update, soft delete
"""
import logging

from rest_framework import generics, status
from rest_framework.response import Response

from core.rate_limiting import RateLimitMixin
from . import services
from .serializers import OrderRequestSerializer, OrderSerializer

logger = logging.getLogger(__name__)


class OrderListCreateView(RateLimitMixin, generics.ListCreateAPIView):
    """
    GET: List orders
    POST: Create a new order

    Query Parameters (GET):
        - item_id: Filter by item

    Request Body (POST):
    {"item_id": 1, "qty": 2, "price": "5.00"}

    Returns:
        - 201: Order created
        - 400: Validation error
        - 404: Item not found
        - 409: Insufficient stock
    """
    serializer_class = OrderSerializer

    def get_queryset(self):
        queryset = services.list_orders()

        item_id = self.request.query_params.get('item_id')
        if item_id and item_id.isdigit():
            queryset = queryset.filter(item_id=item_id)

        return queryset

    def create(self, request, *args, **kwargs):
        serializer = OrderRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = services.create_order(data['item_id'], data['qty'], data.get('price'))
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderDetailView(RateLimitMixin, generics.GenericAPIView):
    """
    GET: Retrieve an order
    PUT: Change item, qty and price; the order number never changes
    DELETE: Soft delete the order (not re-validated)
    """
    serializer_class = OrderSerializer

    def get(self, request, order_no):
        return Response(OrderSerializer(services.get_order(order_no)).data)

    def put(self, request, order_no):
        serializer = OrderRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = services.update_order(order_no, data['item_id'], data['qty'], data.get('price'))
        return Response(OrderSerializer(order).data)

    def delete(self, request, order_no):
        services.delete_order(order_no)
        logger.debug(f"Order {order_no} deleted via API")
        return Response(status=status.HTTP_204_NO_CONTENT)

"""
Inventory API Views.

Implements:
- /items/ CRUD, each item rendered with its derived stock
- /inventories/ CRUD for stock movements (top up / withdrawal)

Writes go through ``inventory.services``; domain errors are rendered by
``core.exceptions.api_exception_handler``.
"""
from rest_framework import generics, status
from rest_framework.response import Response

from core.rate_limiting import RateLimitMixin
from . import services
from .serializers import (
    InventoryMovementRequestSerializer,
    InventoryMovementSerializer,
    ItemRequestSerializer,
    ItemSerializer,
)


# =============================================================================
# Item Views
# =============================================================================

class ItemListCreateView(RateLimitMixin, generics.ListCreateAPIView):
    """
    GET: List live items with current stock (paginated)
    POST: Create a new item

    Request Body (POST):
    {"name": "Pen", "price": "5.00"}
    """
    serializer_class = ItemSerializer

    def get_queryset(self):
        return services.list_items()

    def list(self, request, *args, **kwargs):
        page = self.paginate_queryset(self.get_queryset())
        levels = services.get_stock_levels(item.pk for item in page)
        serializer = ItemSerializer(page, many=True, context={'stock_levels': levels})
        return self.get_paginated_response(serializer.data)

    def create(self, request, *args, **kwargs):
        serializer = ItemRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = services.create_item(**serializer.validated_data)
        return Response(ItemSerializer(item).data, status=status.HTTP_201_CREATED)


class ItemDetailView(RateLimitMixin, generics.GenericAPIView):
    """
    GET: Retrieve an item with current stock
    PUT: Update name and price
    DELETE: Soft delete the item (its ledger rows are kept)
    """
    serializer_class = ItemSerializer

    def get(self, request, pk):
        return Response(ItemSerializer(services.get_item(pk)).data)

    def put(self, request, pk):
        serializer = ItemRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = services.update_item(pk, **serializer.validated_data)
        return Response(ItemSerializer(item).data)

    def delete(self, request, pk):
        services.delete_item(pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Inventory Movement Views
# =============================================================================

class InventoryMovementListCreateView(RateLimitMixin, generics.ListCreateAPIView):
    """
    GET: List live movements, newest first (paginated)
    POST: Record a top up or withdrawal

    Request Body (POST):
    {"item_id": 1, "qty": 5, "type": "T"}

    Returns 409 when a withdrawal exceeds current stock.
    """
    serializer_class = InventoryMovementSerializer

    def get_queryset(self):
        queryset = services.list_movements()

        item_id = self.request.query_params.get('item_id')
        if item_id and item_id.isdigit():
            queryset = queryset.filter(item_id=item_id)

        return queryset

    def create(self, request, *args, **kwargs):
        serializer = InventoryMovementRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        movement = services.record_movement(data['item_id'], data['qty'], data['type'])
        return Response(
            InventoryMovementSerializer(movement).data,
            status=status.HTTP_201_CREATED
        )


class InventoryMovementDetailView(RateLimitMixin, generics.GenericAPIView):
    """
    GET: Retrieve a movement
    PUT: Change item, qty and type (re-validated against stock)
    DELETE: Soft delete the movement (not re-validated)
    """
    serializer_class = InventoryMovementSerializer

    def get(self, request, pk):
        return Response(InventoryMovementSerializer(services.get_movement(pk)).data)

    def put(self, request, pk):
        serializer = InventoryMovementRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        movement = services.update_movement(pk, data['item_id'], data['qty'], data['type'])
        return Response(InventoryMovementSerializer(movement).data)

    def delete(self, request, pk):
        services.delete_movement(pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

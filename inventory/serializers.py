"""
Serializers for items and inventory movements.

Request serializers only check shape; the stock rules live in
``inventory.services``.
"""
from decimal import Decimal

from rest_framework import serializers

from .models import Item, InventoryMovement
from .services import calculate_current_stock


class ItemSerializer(serializers.ModelSerializer):
    """
    Item with its derived stock.

    List views pass precomputed levels as ``stock_levels`` in the context
    to avoid two aggregate queries per row.
    """
    current_stock = serializers.SerializerMethodField()

    class Meta:
        model = Item
        fields = ['id', 'name', 'price', 'current_stock', 'created_at', 'updated_at']
        read_only_fields = fields

    def get_current_stock(self, obj) -> int:
        levels = self.context.get('stock_levels')
        if levels is not None and obj.pk in levels:
            return levels[obj.pk]
        return calculate_current_stock(obj.pk)


class ItemRequestSerializer(serializers.Serializer):
    """Body of POST /items/ and PUT /items/{id}/."""
    name = serializers.CharField(max_length=200)
    price = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        min_value=Decimal('0.01')
    )


class InventoryMovementSerializer(serializers.ModelSerializer):
    item_id = serializers.IntegerField(read_only=True)
    item_name = serializers.CharField(source='item.name', read_only=True)
    type = serializers.CharField(source='kind', read_only=True)

    class Meta:
        model = InventoryMovement
        fields = ['id', 'item_id', 'item_name', 'qty', 'type', 'created_at', 'updated_at']
        read_only_fields = fields


class InventoryMovementRequestSerializer(serializers.Serializer):
    """
    Body of POST /inventories/ and PUT /inventories/{id}/.

    {"item_id": 1, "qty": 5, "type": "T"}
    """
    item_id = serializers.IntegerField(min_value=1)
    qty = serializers.IntegerField(min_value=1)
    type = serializers.ChoiceField(choices=InventoryMovement.Kind.choices)

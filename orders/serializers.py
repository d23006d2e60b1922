"""
Serializers for orders.
"""
from decimal import Decimal

from rest_framework import serializers

from .models import Order


class OrderSerializer(serializers.ModelSerializer):
    """Order with the name of its item, which may since have been deleted."""
    item_id = serializers.IntegerField(read_only=True)
    item_name = serializers.CharField(source='item.name', read_only=True)
    total = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = Order
        fields = [
            'order_no', 'item_id', 'item_name', 'qty', 'price', 'total',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class OrderRequestSerializer(serializers.Serializer):
    """
    Body of POST /orders/ and PUT /orders/{order_no}/.

    {"item_id": 1, "qty": 2, "price": "10.00"}

    ``price`` is optional and defaults to the item's current price.
    """
    item_id = serializers.IntegerField(min_value=1)
    qty = serializers.IntegerField(min_value=1)
    price = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        min_value=Decimal('0.01'),
        required=False,
        allow_null=True
    )

"""
Django Admin configuration for items and inventory movements.

Deletions from the admin are soft deletes, same as through the API.
"""
from django.contrib import admin

from core.admin import SoftDeleteAdmin
from .models import Item, InventoryMovement
from .services import calculate_current_stock


@admin.register(Item)
class ItemAdmin(SoftDeleteAdmin):
    list_display = ['id', 'name', 'price', 'current_stock', 'is_deleted', 'created_at']
    list_filter = ['is_deleted', 'created_at']
    search_fields = ['name']
    ordering = ['id']

    def current_stock(self, obj):
        return calculate_current_stock(obj.pk)
    current_stock.short_description = 'Stock'


@admin.register(InventoryMovement)
class InventoryMovementAdmin(SoftDeleteAdmin):
    list_display = ['id', 'item', 'kind', 'qty', 'is_deleted', 'created_at']
    list_filter = ['kind', 'is_deleted', 'created_at']
    search_fields = ['item__name']
    ordering = ['-id']
    raw_id_fields = ['item']

    def has_change_permission(self, request, obj=None):
        # Edits must go through the API so they are stock-validated
        return False

    def has_add_permission(self, request):
        return False

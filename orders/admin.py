"""
Django Admin configuration for orders.
"""
from django.contrib import admin

from core.admin import SoftDeleteAdmin
from .models import Order


@admin.register(Order)
class OrderAdmin(SoftDeleteAdmin):
    list_display = ['order_no', 'item', 'qty', 'price', 'total', 'is_deleted', 'created_at']
    list_filter = ['is_deleted', 'created_at']
    search_fields = ['order_no', 'item__name']
    ordering = ['-created_at']
    raw_id_fields = ['item']

    def total(self, obj):
        return f"${obj.total}"
    total.short_description = 'Total'

    def has_change_permission(self, request, obj=None):
        return False

    def has_add_permission(self, request):
        return False

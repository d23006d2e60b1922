"""
URL routing for item and inventory movement API endpoints.
"""
from django.urls import path
from . import views

app_name = 'inventory'

urlpatterns = [
    # Items
    path('items/', views.ItemListCreateView.as_view(), name='item-list'),
    path('items/<int:pk>/', views.ItemDetailView.as_view(), name='item-detail'),

    # Inventory movements
    path('inventories/', views.InventoryMovementListCreateView.as_view(), name='movement-list'),
    path('inventories/<int:pk>/', views.InventoryMovementDetailView.as_view(), name='movement-detail'),
]

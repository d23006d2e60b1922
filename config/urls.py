"""
URL configuration for the stock ledger service.

All API routes live under /api/v1/.
"""
import logging

from django.contrib import admin
from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.urls import include, path

logger = logging.getLogger(__name__)


def health_check(request):
    """Liveness plus database reachability, for container orchestration."""
    try:
        connection.ensure_connection()
    except DatabaseError as e:
        logger.error(f"Health check failed: {e}")
        return JsonResponse({'status': 'unhealthy', 'database': 'unreachable'}, status=503)
    return JsonResponse({'status': 'healthy', 'service': 'stock-ledger-api', 'database': 'ok'})


urlpatterns = [
    path('admin/', admin.site.urls),
    path('health/', health_check, name='health-check'),
    path('api/v1/', include('inventory.urls')),
    path('api/v1/', include('orders.urls')),
]

"""
Redis-based rate limiting for the write endpoints.

Fixed window counter per (view, client IP). Fails open: when Redis is
unreachable or rate limiting is disabled, requests go through unthrottled.
"""
import logging
import time
from typing import Optional, Tuple

import redis
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)

SAFE_METHODS = ('GET', 'HEAD', 'OPTIONS')

RECONNECT_INTERVAL_SECONDS = 30

_redis_client = None
_next_connect_attempt = 0.0


def get_redis_client() -> Optional[redis.Redis]:
    """
    Connect on first use; returns None when Redis is unavailable.

    A failed connect is remembered for RECONNECT_INTERVAL_SECONDS so that
    requests are not each stalled by the connect timeout.
    """
    global _redis_client, _next_connect_attempt
    if _redis_client is None:
        now = time.monotonic()
        if now < _next_connect_attempt:
            return None
        try:
            client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5
            )
            client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            _next_connect_attempt = now + RECONNECT_INTERVAL_SECONDS
            logger.warning(
                f"Redis connection failed: {e}. Rate limiting disabled for "
                f"{RECONNECT_INTERVAL_SECONDS}s."
            )
            return None
        _redis_client = client
    return _redis_client


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR', 'unknown')
    return ip


def hit(client: redis.Redis, key: str, window_seconds: int) -> Tuple[int, int]:
    """Count one request against ``key``; returns (count, seconds left)."""
    current_count = client.incr(key)
    if current_count == 1:
        client.expire(key, window_seconds)
    return current_count, client.ttl(key)


class RateLimitMixin:
    """
    Mixin for DRF views that throttles unsafe methods.

    Usage:
        class ItemListCreateView(RateLimitMixin, generics.ListCreateAPIView):
            rate_limit_max_requests = 20
            rate_limit_window_seconds = 60

    Defaults come from RATE_LIMIT_MAX_REQUESTS / RATE_LIMIT_WINDOW_SECONDS.
    """
    rate_limit_max_requests = None
    rate_limit_window_seconds = None

    def get_rate_limit(self) -> Tuple[int, int]:
        return (
            self.rate_limit_max_requests or settings.RATE_LIMIT_MAX_REQUESTS,
            self.rate_limit_window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS,
        )

    def dispatch(self, request, *args, **kwargs):
        if request.method in SAFE_METHODS or not getattr(settings, 'RATE_LIMIT_ENABLED', True):
            return super().dispatch(request, *args, **kwargs)

        client = get_redis_client()
        if client is None:
            return super().dispatch(request, *args, **kwargs)

        max_requests, window_seconds = self.get_rate_limit()
        try:
            key = f"rate_limit:{self.__class__.__name__}:{get_client_ip(request)}"
            current_count, ttl = hit(client, key, window_seconds)
        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return super().dispatch(request, *args, **kwargs)

        if current_count > max_requests:
            logger.warning(f"Rate limit exceeded for {key}")
            response = Response(
                {
                    'error': 'rate_limited',
                    'detail': f'Maximum {max_requests} requests per {window_seconds} seconds allowed.',
                    'retry_after': ttl
                },
                status=status.HTTP_429_TOO_MANY_REQUESTS,
                headers={'Retry-After': str(ttl)}
            )
            # dispatch() is bypassed, so negotiate the renderer here
            self.args, self.kwargs = args, kwargs
            request = self.initialize_request(request, *args, **kwargs)
            self.request = request
            self.headers = self.default_response_headers
            response = self.finalize_response(request, response, *args, **kwargs)
        else:
            response = super().dispatch(request, *args, **kwargs)

        response['X-RateLimit-Limit'] = str(max_requests)
        response['X-RateLimit-Remaining'] = str(max(0, max_requests - current_count))
        response['X-RateLimit-Reset'] = str(ttl)
        return response

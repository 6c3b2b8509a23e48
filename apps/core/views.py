"""
Core API views.
"""
import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

logger = logging.getLogger(__name__)


class HealthCheckView(APIView):
    """
    Health check endpoint to verify system dependencies.

    Returns 200 if the database and cache respond, 503 otherwise.
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        tags=['System'],
        summary="Health check",
        description="Check the health of the database and the shared cache",
    )
    def get(self, request):
        health_status = {
            'status': 'healthy',
            'database': 'healthy',
            'cache': 'healthy',
        }

        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
        except DatabaseError:
            health_status['database'] = 'unhealthy'
            logger.error("Database health check failed", exc_info=True)

        try:
            cache.set('health_check', 'ok', timeout=10)
            if cache.get('health_check') != 'ok':
                health_status['cache'] = 'unhealthy'
        except Exception:
            # Cache backends raise their own client errors (e.g. redis ConnectionError).
            health_status['cache'] = 'unhealthy'
            logger.error("Cache health check failed", exc_info=True)

        if 'unhealthy' in (health_status['database'], health_status['cache']):
            health_status['status'] = 'unhealthy'
            return Response(health_status, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(health_status)

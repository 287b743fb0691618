"""
Core views for the Auto-Pay service.
"""

from django.http import JsonResponse


def health_check(request):
    """
    GET /health/

    Simple health check endpoint for Docker and load balancer probes.
    Not covered by the cron secret.
    """
    return JsonResponse({'status': 'healthy'}, status=200)

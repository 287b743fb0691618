"""
Cron shared-secret middleware.

Requests under /cron/ must carry Authorization: Bearer <CRON_SECRET>
whenever a secret is configured.
"""

import hmac
import logging

from django.conf import settings
from django.http import JsonResponse

logger = logging.getLogger(__name__)

# Paths that require the cron secret
PROTECTED_PREFIXES = (
    '/cron/',
)


class CronSecretMiddleware:
    """
    Middleware that checks the bearer token on scheduler-facing endpoints.

    If CRON_SECRET is empty in settings (e.g., local development), the
    middleware is effectively disabled and all requests pass through.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if not any(request.path.startswith(prefix) for prefix in PROTECTED_PREFIXES):
            return self.get_response(request)

        # If no secret configured, skip auth (dev/test mode)
        secret = getattr(settings, 'CRON_SECRET', '')
        if not secret:
            return self.get_response(request)

        provided = request.META.get('HTTP_AUTHORIZATION', '')
        expected = f'Bearer {secret}'

        if not hmac.compare_digest(provided.encode(), expected.encode()):
            logger.warning(
                "Request to %s rejected: %s",
                request.path,
                'missing bearer token' if not provided else 'invalid bearer token',
            )
            return JsonResponse(
                {
                    'error': True,
                    'status_code': 401,
                    'detail': 'Unauthorized',
                },
                status=401,
            )

        return self.get_response(request)

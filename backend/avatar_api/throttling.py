# avatar_api/throttling.py
from django.conf import settings
from rest_framework.throttling import SimpleRateThrottle


class _IPThrottle(SimpleRateThrottle):
    """Límite fijo por IP; la tasa se lee de settings en cada request."""

    setting_name = ""

    def get_rate(self):
        return getattr(settings, self.setting_name, None)

    def get_cache_key(self, request, view):
        return self.cache_format % {
            "scope": self.scope,
            "ident": self.get_ident(request),
        }


class IPRateThrottle(_IPThrottle):
    scope = "ip"
    setting_name = "API_RATE_LIMIT"


class ImageRateThrottle(_IPThrottle):
    """Límite más estricto para /api/images/* (generación contra Replicate)."""

    scope = "images"
    setting_name = "IMAGE_RATE_LIMIT"

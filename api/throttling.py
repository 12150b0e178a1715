from django.conf import settings
from rest_framework.throttling import SimpleRateThrottle


class ClientRateThrottle(SimpleRateThrottle):
    """
    Fixed ceiling of requests per client address over a sliding window.
    Ceiling and window come from RATE_LIMIT_MAX_REQUESTS and
    RATE_LIMIT_WINDOW_SECONDS rather than DRF's "n/period" strings, so any
    window length works.
    """

    scope = "client"

    def get_rate(self):
        return f"{settings.RATE_LIMIT_MAX_REQUESTS}/{settings.RATE_LIMIT_WINDOW_SECONDS}"

    def parse_rate(self, rate):
        if rate is None:
            return (None, None)
        num, window = rate.split("/")
        return int(num), int(window)

    def get_cache_key(self, request, view):
        return self.cache_format % {"scope": self.scope, "ident": self.get_ident(request)}

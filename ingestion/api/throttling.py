"""
API throttling classes.
"""

from rest_framework.throttling import UserRateThrottle


class TotalsRefreshThrottle(UserRateThrottle):
    """
    Throttle for forced total refreshes.

    Rate: 10 requests per hour per user.
    Applied to: /api/v1/sources/totals/?refresh=true
    """

    rate = '10/hour'
    scope = 'totals_refresh'

    def allow_request(self, request, view):
        # Cached reads are free; only forced refreshes hit the sources
        if request.query_params.get('refresh', '').lower() not in ('1', 'true', 'yes'):
            return True
        return super().allow_request(request, view)


class ReadThrottle(UserRateThrottle):
    """
    Throttle for catalog read endpoints.

    Rate: 1000 requests per hour per user.
    """

    rate = '1000/hour'
    scope = 'catalog_read'

from rest_framework.throttling import UserRateThrottle


class BurstRateThrottle(UserRateThrottle):
    """
    Short window limit for every authenticated caller.
    Scope: 'burst'
    """
    scope = 'burst'


class SustainedRateThrottle(UserRateThrottle):
    """
    General API usage.
    """
    scope = 'sustained'


class LocationUpdateThrottle(UserRateThrottle):
    """
    Partner apps push GPS fixes continuously; cap them per partner.
    Scope: 'location'
    """
    scope = 'location'

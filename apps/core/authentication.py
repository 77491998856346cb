"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication


class MiddlewareAuthentication(BaseAuthentication):
    """
    Hand the user resolved by JWTAuthenticationMiddleware over to DRF.

    The middleware has already validated the bearer token; this class only
    reads the result from the underlying Django request.
    """

    def authenticate(self, request):
        django_request = request._request
        user = getattr(django_request, 'user', None)

        if user is not None and user.is_authenticated:
            return (user, None)

        return None

    def authenticate_header(self, request):
        # A header value makes DRF answer 401 rather than 403 for anonymous callers
        return 'Bearer'

"""
Core middleware for request processing.
"""
import uuid
import logging
from django.contrib.auth.models import AnonymousUser
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Attach a request_id to every request and echo it as ``X-Request-ID``.
    """

    def process_request(self, request):
        request.request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        return response


class JWTAuthenticationMiddleware(MiddlewareMixin):
    """
    Resolve ``Authorization: Bearer <jwt>`` into ``request.user``.

    An invalid or expired token leaves the request anonymous; the endpoint's
    guards decide whether that is a 401. DRF picks the user up through
    ``apps.core.authentication.MiddlewareAuthentication``.
    """

    keyword = 'Bearer'

    def process_request(self, request):
        request.user = AnonymousUser()

        header = request.META.get('HTTP_AUTHORIZATION', '')
        parts = header.split()
        if len(parts) != 2 or parts[0] != self.keyword:
            return None

        from apps.rbac.services import auth_service

        user = auth_service.get_user_from_jwt(parts[1])
        if user is None:
            logger.info(
                "Rejected bearer token",
                extra={'request_id': getattr(request, 'request_id', None), 'path': request.path}
            )
            return None

        request.user = user
        return None

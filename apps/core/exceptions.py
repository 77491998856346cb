"""
Error taxonomy and the DRF exception handler.

Services raise ``ServiceError`` subclasses; the handler below turns them (and
DRF/Django errors) into ``{"message", "details", "request_id"}`` bodies.
"""
import logging
from django.conf import settings
from django.http import Http404, JsonResponse
from django_ratelimit.exceptions import Ratelimited
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = 'Too many attempts, please try again later'
RATE_LIMIT_RETRY_AFTER = 60


class ServiceError(Exception):
    """Base exception for auth service errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message, details=None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Malformed or missing input."""
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(ServiceError):
    """Duplicate email, duplicate role name, duplicate permission."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ServiceError):
    """User, role, permission or business does not exist."""
    status_code = status.HTTP_404_NOT_FOUND


class AuthenticationError(ServiceError):
    """No identity attached to the request."""
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(ServiceError):
    """Identity present but not allowed to act."""
    status_code = status.HTTP_403_FORBIDDEN


class InternalError(ServiceError):
    """Unexpected failure or broken data invariant."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class EmailDeliveryError(InternalError):
    """The email collaborator could not deliver a message."""
    pass


def _error_body(message, details=None, request_id=None):
    body = {'message': message}
    if details is not None:
        body['details'] = details
    if request_id:
        body['request_id'] = request_id
    return body


def ratelimit_view(request, exception):
    """
    View used by django-ratelimit (``RATELIMIT_VIEW``) for blocked requests.

    Answers 429 instead of the library's default 403.
    """
    from apps.core.logging import SecurityLogger

    SecurityLogger.log_rate_limit_exceeded(
        endpoint=request.path,
        ip_address=request.META.get('REMOTE_ADDR', 'unknown'),
    )
    response = JsonResponse(
        _error_body(RATE_LIMIT_MESSAGE, request_id=getattr(request, 'request_id', None)),
        status=status.HTTP_429_TOO_MANY_REQUESTS,
    )
    response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
    return response


def rate_limited_response(request, limit, retry_after=RATE_LIMIT_RETRY_AFTER):
    """
    429 for views decorated with ``ratelimit(block=False)`` whose
    ``request.limited`` flag is set.
    """
    from apps.core.logging import SecurityLogger

    SecurityLogger.log_rate_limit_exceeded(
        endpoint=request.path,
        ip_address=request.META.get('REMOTE_ADDR', 'unknown'),
        limit=limit,
    )
    response = Response(
        _error_body(RATE_LIMIT_MESSAGE, request_id=getattr(request, 'request_id', None)),
        status=status.HTTP_429_TOO_MANY_REQUESTS,
    )
    response['Retry-After'] = str(retry_after)
    return response


def custom_exception_handler(exc, context):
    """
    Render every API error with a ``message`` field.

    Stack traces never reach the body; the exception text is only exposed in
    ``details`` of a 500 when DEBUG is on.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None
    log_extra = {
        'request_id': request_id,
        'path': request.path if request else None,
        'method': request.method if request else None,
        'exception': exc.__class__.__name__,
    }

    if isinstance(exc, Ratelimited):
        from apps.core.logging import SecurityLogger

        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown',
        )
        response = Response(
            _error_body(RATE_LIMIT_MESSAGE, request_id=request_id),
            status=status.HTTP_429_TOO_MANY_REQUESTS,
        )
        response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
        return response

    if isinstance(exc, ServiceError):
        if exc.status_code >= 500:
            logger.error(f"Service error: {exc.message}", extra=log_extra, exc_info=True)
        else:
            logger.info(f"Request rejected: {exc.message}", extra=log_extra)
        return Response(
            _error_body(exc.message, exc.details, request_id),
            status=exc.status_code,
        )

    if isinstance(exc, drf_exceptions.ValidationError):
        return Response(
            _error_body('Validation error', exc.detail, request_id),
            status=status.HTTP_400_BAD_REQUEST,
        )

    if isinstance(exc, (drf_exceptions.NotAuthenticated, drf_exceptions.AuthenticationFailed)):
        return Response(
            _error_body('Authentication required', request_id=request_id),
            status=status.HTTP_401_UNAUTHORIZED,
        )

    if isinstance(exc, Http404):
        return Response(
            _error_body('Not found', request_id=request_id),
            status=status.HTTP_404_NOT_FOUND,
        )

    # Let DRF handle the rest of its own exceptions, then reshape the body
    response = exception_handler(exc, context)

    if response is None:
        logger.error(f"Unhandled API exception: {exc.__class__.__name__}", extra=log_extra, exc_info=True)
        return Response(
            _error_body(
                'Internal server error',
                str(exc) if settings.DEBUG else None,
                request_id,
            ),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    detail = response.data.get('detail') if isinstance(response.data, dict) else response.data
    response.data = _error_body(str(detail) if detail else 'Request failed', request_id=request_id)
    return response

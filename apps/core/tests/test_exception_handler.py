"""
Tests for the error body contract of the API.
"""
from django.test import TestCase, override_settings
from django_ratelimit.exceptions import Ratelimited
from rest_framework import serializers
from rest_framework.test import APIRequestFactory
from rest_framework.views import APIView

from apps.core.exceptions import (
    AuthenticationError, AuthorizationError, ConflictError, EmailDeliveryError,
    NotFoundError, ValidationError,
)


class RaisingView(APIView):
    authentication_classes = []
    permission_classes = []
    error = None

    def get(self, request):
        raise self.error


class NameSerializer(serializers.Serializer):
    name = serializers.CharField()


class SerializerView(APIView):
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        NameSerializer(data=request.data).is_valid(raise_exception=True)


def raise_through_view(error, request_id=None):
    request = APIRequestFactory().get('/boom')
    if request_id:
        request.request_id = request_id
    return RaisingView.as_view(error=error)(request)


class ServiceErrorMappingTestCase(TestCase):
    """Test ServiceError subclasses map to their status codes."""

    def test_status_codes(self):
        cases = [
            (ValidationError('Bad input'), 400),
            (ConflictError('Duplicate'), 400),
            (AuthenticationError('Who are you'), 401),
            (AuthorizationError('Access denied'), 403),
            (NotFoundError('Role not found'), 404),
            (EmailDeliveryError('Failed to send password setup email'), 500),
        ]
        for error, expected in cases:
            with self.subTest(error=error.__class__.__name__):
                response = raise_through_view(error)

                self.assertEqual(response.status_code, expected)
                self.assertEqual(response.data['message'], error.message)

    def test_details_and_request_id(self):
        response = raise_through_view(
            AuthorizationError('Access denied. Insufficient permissions.',
                               details='Required permission: read on orders'),
            request_id='req-42',
        )

        self.assertEqual(response.data, {
            'message': 'Access denied. Insufficient permissions.',
            'details': 'Required permission: read on orders',
            'request_id': 'req-42',
        })

    def test_no_details_key_when_absent(self):
        response = raise_through_view(NotFoundError('User not found'))

        self.assertNotIn('details', response.data)


class FrameworkErrorTestCase(TestCase):
    """Test DRF, Django and unexpected errors."""

    def test_serializer_validation(self):
        request = APIRequestFactory().post('/names', {}, format='json')

        response = SerializerView.as_view()(request)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['message'], 'Validation error')
        self.assertIn('name', response.data['details'])

    @override_settings(DEBUG=False)
    def test_unexpected_error_hides_text(self):
        with self.assertLogs('apps.core.exceptions', level='ERROR'):
            response = raise_through_view(RuntimeError('connection string leaked'))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data, {'message': 'Internal server error'})

    @override_settings(DEBUG=True)
    def test_unexpected_error_text_in_debug(self):
        with self.assertLogs('apps.core.exceptions', level='ERROR'):
            response = raise_through_view(RuntimeError('boom'))

        self.assertEqual(response.data['details'], 'boom')

    def test_ratelimited_is_429(self):
        response = raise_through_view(Ratelimited())

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response['Retry-After'], '60')
        self.assertEqual(response.data['message'], 'Too many attempts, please try again later')

    def test_method_not_allowed_keeps_status(self):
        request = APIRequestFactory().delete('/boom')

        response = RaisingView.as_view()(request)

        self.assertEqual(response.status_code, 405)
        self.assertIn('message', response.data)

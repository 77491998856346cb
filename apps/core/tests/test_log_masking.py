"""
Tests for structured logging and PII masking.
"""
import json
import logging
import sys
from unittest.mock import patch

from django.test import TestCase

from apps.core.logging import JSONFormatter, PIIMasker, PIIMaskingFilter, SecurityLogger


def make_record(msg, args=None, **extra):
    record = logging.LogRecord(
        name='apps.rbac', level=logging.INFO, pathname=__file__, lineno=1,
        msg=msg, args=args, exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class PIIMaskerTestCase(TestCase):
    """Test PII masking functionality."""

    def test_mask_email_addresses(self):
        masked = PIIMasker.mask_email("Contact user@example.com or admin@test.org")

        self.assertIn("u***@example.com", masked)
        self.assertNotIn("user@example.com", masked)
        self.assertIn("a****@test.org", masked)

    def test_mask_secrets(self):
        text = 'token="abc123" password: hunter2 Authorization: Bearer eyJhbGciOi.x.y'
        masked = PIIMasker.mask_secrets(text)

        self.assertNotIn("abc123", masked)
        self.assertNotIn("hunter2", masked)
        self.assertNotIn("eyJhbGciOi", masked)
        self.assertIn("token: ********", masked)

    def test_mask_dict_sensitive_fields(self):
        data = {
            'user_id': '42',
            'email': 'john@example.com',
            'plain_token': 'f' * 64,
            'nested': {'password': 'hunter2', 'note': 'mail jane@example.com'},
            'items': [{'secret': 's3cr3t'}, 'ok'],
        }

        masked = PIIMasker.mask_dict(data)

        self.assertEqual(masked['user_id'], '42')
        self.assertEqual(masked['email'], 'j***@example.com')
        self.assertEqual(masked['plain_token'], '********')
        self.assertEqual(masked['nested']['password'], '********')
        self.assertEqual(masked['nested']['note'], 'mail j***@example.com')
        self.assertEqual(masked['items'][0]['secret'], '********')
        self.assertEqual(masked['items'][1], 'ok')

    def test_non_strings_pass_through(self):
        self.assertEqual(PIIMasker.mask_text(42), 42)
        self.assertIsNone(PIIMasker.mask_dict(None))


class PIIMaskingFilterTestCase(TestCase):
    """Test the logging filter used with plain-text handlers."""

    def test_masks_message_and_args(self):
        record = make_record("Login for %s from %s", ('ada@example.com', '10.0.0.1'))

        self.assertTrue(PIIMaskingFilter().filter(record))

        message = record.getMessage()
        self.assertNotIn('ada@example.com', message)
        self.assertIn('a**@example.com', message)

    def test_masks_mapping_args(self):
        record = make_record("User %(email)s", ({'email': 'ada@example.com'},))

        PIIMaskingFilter().filter(record)

        self.assertEqual(record.getMessage(), 'User a**@example.com')


class JSONFormatterTestCase(TestCase):
    """Test JSON log formatting."""

    def test_format_basic_record(self):
        record = make_record("Role created", request_id='req-1', role_id='r-1')

        log_data = json.loads(JSONFormatter().format(record))

        self.assertEqual(log_data['level'], 'INFO')
        self.assertEqual(log_data['logger'], 'apps.rbac')
        self.assertEqual(log_data['message'], 'Role created')
        self.assertEqual(log_data['request_id'], 'req-1')
        self.assertEqual(log_data['role_id'], 'r-1')

    def test_extra_fields_are_masked(self):
        record = make_record(
            "Setup for ada@example.com",
            setup_url='http://localhost/password-setup?token=abc',
            user_email='ada@example.com',
        )

        log_data = json.loads(JSONFormatter().format(record))

        self.assertNotIn('ada@example.com', log_data['message'])
        self.assertEqual(log_data['setup_url'], '********')
        self.assertEqual(log_data['user_email'], 'a**@example.com')

    def test_exception_info(self):
        try:
            raise RuntimeError("password=hunter2")
        except RuntimeError:
            record = make_record("Failed")
            record.exc_info = sys.exc_info()

        log_data = json.loads(JSONFormatter().format(record))

        self.assertEqual(log_data['exception']['type'], 'RuntimeError')
        self.assertNotIn('hunter2', log_data['exception']['message'])

    def test_unserialisable_extra_is_stringified(self):
        record = make_record("Odd extra", blob=object())

        log_data = json.loads(JSONFormatter().format(record))

        self.assertIsInstance(log_data['blob'], str)


class SecurityLoggerTestCase(TestCase):
    """Test security event logging."""

    def test_event_is_masked(self):
        with self.assertLogs('security', level='WARNING') as captured:
            SecurityLogger.log_failed_login('ada@example.com', '10.0.0.1', reason='invalid_credentials')

        record = captured.records[0]
        self.assertEqual(record.event_type, 'failed_login')
        self.assertEqual(record.email, 'a**@example.com')

    @patch('apps.core.logging.sentry_sdk.capture_message')
    def test_critical_event_reaches_sentry(self, capture_message):
        with self.assertLogs('security', level='ERROR'):
            SecurityLogger.log_suspicious_activity(
                'cross_business_access_attempt', 'Role outside business', user_id='1'
            )

        capture_message.assert_called_once()

    @patch('apps.core.logging.sentry_sdk.capture_message')
    def test_ordinary_event_stays_local(self, capture_message):
        with self.assertLogs('security', level='WARNING'):
            SecurityLogger.log_rate_limit_exceeded('/v1/auth/login', '10.0.0.1')

        capture_message.assert_not_called()

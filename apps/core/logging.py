"""
Structured logging helpers.

- PIIMasker: scrubs emails, tokens and secrets from log text and extras
- PIIMaskingFilter: applies PIIMasker to plain-text records
- JSONFormatter: one JSON document per record (enabled with JSON_LOGS)
- SecurityLogger: security events on the ``security`` logger, critical ones to Sentry
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Mask sensitive values before they are written to a log sink.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|authorization)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )
    BEARER_PATTERN = re.compile(r'Bearer\s+[A-Za-z0-9_\-\.]+', re.IGNORECASE)

    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'passwd',
        'token', 'plain_token', 'hashed_token', 'setup_url',
        'password_reset_token_hash', 'access_token', 'refresh_token',
        'secret', 'secret_key', 'authorization',
    }

    @classmethod
    def mask_email(cls, text):
        """Keep the first character of the local part and the domain."""
        if not isinstance(text, str):
            return text

        def _mask(match):
            local, _, domain = match.group(0).partition('@')
            if len(local) > 1:
                local = local[0] + '*' * (len(local) - 1)
            return f"{local}@{domain}"

        return cls.EMAIL_PATTERN.sub(_mask, text)

    @classmethod
    def mask_secrets(cls, text):
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub('Bearer ********', text)
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask a dictionary of log context."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS and value and not isinstance(value, (dict, list)):
                masked[key] = '********'
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            else:
                masked[key] = cls.mask_text(value)
        return masked


class PIIMaskingFilter(logging.Filter):
    """
    Mask the message and string args of a record before any formatter runs.

    Used with the plain-text console formatter; JSONFormatter masks on its own.
    """

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = PIIMasker.mask_text(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = PIIMasker.mask_dict(record.args)
            else:
                record.args = tuple(PIIMasker.mask_text(arg) for arg in record.args)

        return True


_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'message', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'request_id',
}


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON.

    ``request_id`` is lifted to the top level; every other ``extra`` key is
    masked and copied when it is JSON serialisable.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if getattr(record, 'request_id', None):
            log_data['request_id'] = record.request_id

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [
                    PIIMasker.mask_text(line)
                    for line in traceback.format_exception(*record.exc_info)
                ],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS or key.startswith('_'):
                continue
            if key.lower() in PIIMasker.SENSITIVE_FIELDS and value:
                log_data[key] = '********'
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            else:
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Security event logging.

    Events go to the ``security`` logger with masked context. Event types in
    CRITICAL_EVENTS are also reported to Sentry.
    """

    CRITICAL_EVENTS = {
        'authorization_error',
        'self_deletion_attempt',
        'cross_business_access_attempt',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_failed_login(email: str, ip_address: str, reason: str = None):
        SecurityLogger.log_event(
            'failed_login',
            email=email,
            ip_address=ip_address,
            reason=reason,
        )

    @staticmethod
    def log_access_denied(user, requirement: str, path: str = None, ip_address: str = None):
        """
        Log a request stopped by an authorization guard.

        Args:
            user: Authenticated user that was denied
            requirement: What was required (``read on orders``, ``roles: a, b``)
            path: Request path
            ip_address: Client address
        """
        SecurityLogger.log_event(
            'access_denied',
            user_id=str(user.id) if user else None,
            user_email=getattr(user, 'email', None),
            requirement=requirement,
            path=path,
            ip_address=ip_address,
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str, limit: str = None):
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            endpoint=endpoint,
            ip_address=ip_address,
            limit=limit,
        )

    @staticmethod
    def log_suspicious_activity(activity_type: str, description: str, **context):
        """
        Log behaviour that is refused but worth alerting on.

        ``activity_type`` doubles as the event type so that critical types
        reach Sentry.
        """
        SecurityLogger.log_event(
            activity_type,
            level='error',
            description=description,
            **context,
        )

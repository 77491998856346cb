"""
Email collaborator.

Messages go through Django's configured email backend (console in
development, SMTP in production, locmem in tests).
"""
import logging
from typing import List, Optional
from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.mail import send_mail as django_send_mail
from django.core.validators import validate_email

logger = logging.getLogger(__name__)


class EmailServiceError(Exception):
    """Raised when a message cannot be handed to the email backend."""
    pass


PASSWORD_SETUP_SUBJECT = "Set up your administrator password"

PASSWORD_SETUP_BODY = """Hello {name},

An administrator account has been created for {email}.

Use the link below to choose your password:

{setup_url}

The link expires in {expires_hours} hours. If you did not expect this
message you can ignore it.
"""


class EmailService:
    """
    Send transactional email through the Django email backend.
    """

    @staticmethod
    def is_valid_email(email: str) -> bool:
        if not email or not isinstance(email, str):
            return False
        try:
            validate_email(email)
        except DjangoValidationError:
            return False
        return True

    @classmethod
    def send_email(
        cls,
        to_emails: List[str],
        subject: str,
        text_content: str,
        from_email: Optional[str] = None,
    ) -> bool:
        """
        Send a plain text email.

        Raises:
            EmailServiceError: If the backend refuses the message
        """
        from_email = from_email or settings.DEFAULT_FROM_EMAIL

        try:
            sent = django_send_mail(
                subject=subject,
                message=text_content,
                from_email=from_email,
                recipient_list=to_emails,
                fail_silently=False,
            )
        except Exception as e:
            logger.error(f"Email sending failed: {e.__class__.__name__}")
            raise EmailServiceError(f"Email sending failed: {e}") from e

        if not sent:
            raise EmailServiceError("Email backend accepted no messages")

        logger.info(f"Email sent via Django backend to {len(to_emails)} recipients")
        return True

    @classmethod
    def send_password_setup_email(cls, email: str, name: str, setup_url: str) -> bool:
        """Send the one-time password setup link to a new administrator."""
        expires_hours = max(1, settings.PASSWORD_RESET_TOKEN_EXPIRES // 3600)
        return cls.send_email(
            to_emails=[email],
            subject=PASSWORD_SETUP_SUBJECT,
            text_content=PASSWORD_SETUP_BODY.format(
                name=name,
                email=email,
                setup_url=setup_url,
                expires_hours=expires_hours,
            ),
        )

"""
One-time setup / reset tokens.

The plaintext token only ever leaves the process inside a magic link; the
database stores its SHA-256 hex digest.
"""
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from django.conf import settings
from django.utils import timezone

TOKEN_BYTES = 32


@dataclass(frozen=True)
class ResetToken:
    """A freshly generated token pair."""
    plain_token: str
    hashed_token: str
    expires_at: datetime


def hash_token(plain_token: str) -> str:
    """SHA-256 hex digest of a plaintext token."""
    return hashlib.sha256(plain_token.encode('utf-8')).hexdigest()


def token_expiry(now: Optional[datetime] = None) -> datetime:
    now = now or timezone.now()
    return now + timedelta(seconds=settings.PASSWORD_RESET_TOKEN_EXPIRES)


def generate_password_reset_token() -> ResetToken:
    """Generate a token pair with an expiry of PASSWORD_RESET_TOKEN_EXPIRES seconds."""
    plain_token = secrets.token_hex(TOKEN_BYTES)
    return ResetToken(
        plain_token=plain_token,
        hashed_token=hash_token(plain_token),
        expires_at=token_expiry(),
    )


def verify_token(plain_token: str, hashed_token: str, expires_at: Optional[datetime] = None) -> bool:
    """
    Check a plaintext token against a stored hash.

    The comparison is constant time. A token whose ``expires_at`` has passed
    never verifies.
    """
    if not plain_token or not hashed_token:
        return False
    if expires_at is not None and expires_at <= timezone.now():
        return False
    return hmac.compare_digest(hash_token(plain_token), hashed_token)

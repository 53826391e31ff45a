"""
Authentication utilities: bearer token verification and local JWT issuance
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from config.settings import settings

logger = logging.getLogger(__name__)

# Local tokens (development and tests)
ALGORITHM = "HS256"

# Identity-provider tokens
AUTH0_ALGORITHM = "RS256"

_jwks_client: Optional[jwt.PyJWKClient] = None


def auth0_enabled() -> bool:
    return bool(settings.auth0_issuer_base_url and settings.auth0_audience)


def _issuer() -> str:
    return settings.auth0_issuer_base_url.rstrip("/") + "/"


def _get_jwks_client() -> jwt.PyJWKClient:
    """Shared JWKS client; signing keys are cached between requests."""
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = jwt.PyJWKClient(f"{_issuer()}.well-known/jwks.json", cache_keys=True)
    return _jwks_client


def create_jwt(subject: str, email: Optional[str] = None, name: Optional[str] = None, expires_in: timedelta = timedelta(days=7)) -> str:
    """Create a local HS256 token for a subject"""
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot create JWT token.")

    payload = {
        "sub": subject,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM)


def decode_jwt(token: str) -> Optional[dict]:
    """
    Verify a bearer token and return its claims. Returns None if invalid.

    Tokens are checked against the identity provider's JWKS when Auth0 is
    configured, otherwise against JWT_SECRET_KEY.
    """
    try:
        if auth0_enabled():
            signing_key = _get_jwks_client().get_signing_key_from_jwt(token)
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=[AUTH0_ALGORITHM],
                audience=settings.auth0_audience,
                issuer=_issuer(),
            )
        if not settings.jwt_secret_key:
            logger.error("Neither Auth0 nor JWT_SECRET_KEY is configured. Cannot verify tokens.")
            return None
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.PyJWKClientError as e:
        logger.warning(f"Could not resolve signing key: {e}")
        return None
    except jwt.InvalidTokenError:
        return None


def calculate_trial_days_remaining(trial_expiry: Optional[datetime], now: datetime) -> Optional[int]:
    """
    Whole days left in a trial, rounded up (negative once expired).

    Returns None when there is no trial expiry.
    """
    if trial_expiry is None:
        return None
    return math.ceil((trial_expiry - now).total_seconds() / 86400)

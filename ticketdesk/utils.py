"""
Utility functions for the ticketdesk API.
"""

import hmac
import logging
from typing import Optional

from fastapi import Header

from ticketdesk.config import settings
from ticketdesk.errors import AuthenticationError

logger = logging.getLogger(__name__)


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Extract the token from an "Authorization: Bearer <token>" header value.

    Returns:
        The token, or None if the header is missing or not a bearer header
    """
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_api_token(token: Optional[str], expected: str) -> bool:
    """
    Compare an API token against the configured one.

    Args:
        token: Token presented by the caller
        expected: API_TOKEN

    Returns:
        True if token is valid, False otherwise
    """
    if not token:
        return False

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))
    logger.debug(f"API token verification: {'valid' if is_valid else 'invalid'}")
    return is_valid


def require_api_token(authorization: Optional[str] = Header(None)) -> None:
    """
    FastAPI dependency guarding the /api and /tickets routes.

    Authentication is disabled when API_TOKEN is not configured.

    Raises:
        AuthenticationError: Missing or invalid bearer token
    """
    if not settings.API_TOKEN:
        return

    if not verify_api_token(parse_bearer_token(authorization), settings.API_TOKEN):
        logger.warning("Rejected request with missing or invalid API token")
        raise AuthenticationError()

"""
Authentication Middleware for the Luvia product assistant API.

Operator endpoints (conversation reset, handoff management) require the
admin API key in the X-API-Key header or the api_key query parameter.
"""

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader, APIKeyQuery

from config.settings import get_settings

logger = logging.getLogger(__name__)

# ── Security schemes ───────────────────────────────────────────────
API_KEY_HEADER = "X-API-Key"
API_KEY_QUERY = "api_key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)
api_key_query = APIKeyQuery(name=API_KEY_QUERY, auto_error=False)


# ── Dependencies ──────────────────────────────────────────────────

def get_admin_api_key() -> str:
    """Get the operator API key from settings."""
    return get_settings().admin_api_key or ""


async def require_operator_key(
    header_key: Optional[str] = Security(api_key_header),
    query_key: Optional[str] = Security(api_key_query),
) -> str:
    """Validate the operator API key from header or query parameter."""
    api_key = header_key or query_key
    expected_key = get_admin_api_key()

    # Skip auth if no key configured (development mode)
    if not expected_key:
        logger.warning("Operator authentication disabled - no ADMIN_API_KEY configured")
        return ""

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not hmac.compare_digest(api_key, expected_key):
        logger.warning("Invalid operator API key attempt")
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key

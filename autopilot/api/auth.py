"""X-API-Key check shared by every engine and control route."""

import hmac

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader
from loguru import logger

from autopilot.config.settings import get_settings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_api_key(api_key: str | None = Security(api_key_header)) -> str:
    """
    Router dependency guarding the scheduler-facing endpoints.

    Raises:
        HTTPException: 401 when the header is absent or blank, 403 when it
            does not match API_SECRET_KEY
    """
    if not api_key or not api_key.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Include 'X-API-Key' header.",
        )

    expected = get_settings().api_secret_key
    if not hmac.compare_digest(api_key.encode(), expected.encode()):
        logger.warning("Rejected engine request with an invalid API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key.",
        )

    return api_key

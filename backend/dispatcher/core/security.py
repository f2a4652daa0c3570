"""
API key authentication for the dispatcher endpoints.

Clients send the shared key in the ``X-API-Key`` header. When
DISPATCHER_API_KEY is not set, authentication is disabled.
"""
import secrets
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from .config import get_settings
from .logging import get_logger

logger = get_logger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_api_key(api_key: Optional[str] = Security(api_key_header)) -> None:
    """
    FastAPI dependency guarding the chat and task endpoints.

    Raises:
        HTTPException: 401 when the header is missing, 403 when it does not match
    """
    expected = get_settings().api_key
    if not expected:
        return
    if not api_key:
        logger.warning("auth_missing_api_key")
        raise HTTPException(status_code=401, detail="Missing API key")
    if not secrets.compare_digest(api_key, expected):
        logger.warning("auth_invalid_api_key")
        raise HTTPException(status_code=403, detail="Invalid API key")

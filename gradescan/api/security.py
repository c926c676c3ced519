import secrets
from typing import Optional
from fastapi import Security, HTTPException, status
from fastapi.security import APIKeyHeader, APIKeyQuery
from loguru import logger

from gradescan.core.config import settings


api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
api_key_query = APIKeyQuery(name="api_key", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"}
    )


async def get_api_key(
    header_key: Optional[str] = Security(api_key_header),
    query_key: Optional[str] = Security(api_key_query)
) -> Optional[str]:
    """Guard for the routes that scan or write; a no-op unless API_KEY_ENABLED is set."""
    if not settings.api_key_enabled:
        return None

    provided = header_key or query_key
    if not provided:
        raise _unauthorized("API key is required (X-API-Key header or api_key query parameter)")

    if not settings.api_key or not secrets.compare_digest(provided, settings.api_key):
        logger.warning("Request rejected: invalid API key")
        raise _unauthorized("Invalid API key")

    return provided

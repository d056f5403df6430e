"""API key auth for the HTTP surface. Open when API_KEY is not configured (local dev)."""
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import APIKeyHeader

from .config import settings

api_key_header = APIKeyHeader(name=settings.api_key_header, auto_error=False)


def _matches(candidate: Optional[str]) -> bool:
    return bool(candidate) and secrets.compare_digest(candidate, settings.api_key)


async def require_api_key(api_key: Optional[str] = Depends(api_key_header)) -> None:
    if not settings.api_key:
        return
    if not _matches(api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )


async def require_api_key_for_sse(
    api_key: Optional[str] = Depends(api_key_header),
    key: Optional[str] = Query(None, description="API key (EventSource cannot set headers)"),
) -> None:
    """Same as require_api_key, but also accepts ?key=... for EventSource clients."""
    if not settings.api_key:
        return
    if not (_matches(api_key) or _matches(key)):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )

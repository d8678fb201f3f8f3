"""
FastAPI Dependencies - Shared-key authentication.

Service callers present X-API-Key, operators present X-Admin-Key. Keys are
compared in constant time. A key that is not configured disables its routes
(503) rather than leaving them open.
"""

import secrets
from collections.abc import Awaitable, Callable

from fastapi import Header, HTTPException, Request, status
from structlog import get_logger

from showroom_billing.config import settings

logger = get_logger(__name__)


def keys_match(provided: str | None, expected: str) -> bool:
    """Constant-time comparison; an absent value never matches."""
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _require_key(
    setting_name: str, header_name: str, scheme: str
) -> Callable[..., Awaitable[None]]:
    """
    FastAPI dependency factory checking one configured shared key.

    Args:
        setting_name: Settings attribute holding the expected key
        header_name: Request header carrying the key
        scheme: Value for the WWW-Authenticate header on 401
    """

    async def key_checker(
        request: Request,
        provided: str | None = Header(None, alias=header_name),
    ) -> None:
        expected: str = getattr(settings, setting_name)
        if not expected:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"{header_name} authentication not configured",
            )

        if not keys_match(provided, expected):
            logger.warning(
                "api_key_rejected",
                header=header_name,
                path=request.url.path,
                client_host=_client_host(request),
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid or missing {header_name}",
                headers={"WWW-Authenticate": scheme},
            )

    return key_checker


require_service_key = _require_key("service_api_key", "X-API-Key", "ApiKey")
require_admin_key = _require_key("admin_api_key", "X-Admin-Key", "AdminKey")

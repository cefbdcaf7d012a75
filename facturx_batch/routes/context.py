from __future__ import annotations

from fastapi import Header, Request

from facturx_batch.application import CallerContext
from facturx_batch.core.errors import Unauthenticated


async def get_caller(
    request: Request,
    x_user_id: str | None = Header(default=None),
    x_api_key_id: str | None = Header(default=None),
) -> CallerContext:
    """Resolve the caller forwarded by the authentication layer."""

    if not x_user_id or not x_user_id.strip():
        raise Unauthenticated()
    return CallerContext(
        user_id=x_user_id.strip(),
        api_key_id=x_api_key_id or None,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

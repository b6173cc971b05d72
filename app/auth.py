"""Request authentication via headers set by the upstream identity proxy."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request

from .config import settings
from .models import UserClaims, UserRead
from .services.accounts import AccountService
from .utils import split_display_name

logger = logging.getLogger(__name__)


def get_account_service(request: Request) -> AccountService:
    service = getattr(request.app.state, "account_service", None)
    if not isinstance(service, AccountService):
        raise RuntimeError("Account service not initialised")
    return service


def claims_from_headers(request: Request) -> UserClaims | None:
    """Build identity claims from the proxy headers, if present."""

    user_id = (request.headers.get(settings.auth_user_header) or "").strip()
    if not user_id:
        return None
    first_name, last_name = split_display_name(
        request.headers.get(settings.auth_name_header)
    )
    email = (request.headers.get(settings.auth_email_header) or "").strip() or None
    return UserClaims(
        id=user_id, email=email, first_name=first_name, last_name=last_name
    )


async def get_current_user(request: Request) -> UserRead:
    claims = claims_from_headers(request)
    if claims is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    service = get_account_service(request)
    return await service.sign_in(claims)


async def require_admin(user: UserRead = Depends(get_current_user)) -> UserRead:
    if not user.is_admin:
        logger.warning("User %s attempted an admin operation", user.id)
        raise HTTPException(status_code=403, detail="Administrator access required")
    return user

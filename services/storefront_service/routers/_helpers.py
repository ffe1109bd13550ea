"""Shared router helpers."""

import uuid
from typing import Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from libs.auth.models import AuthUser
from libs.common.errors import CoreError
from libs.common.logging import get_logger
from services.storefront_service.models import ActorRole
from services.storefront_service.services.engine import StorefrontEngine
from services.storefront_service.services.order_state import Actor

logger = get_logger(__name__)


def get_engine(request: Request) -> StorefrontEngine:
    return request.app.state.engine


def actor_for(user: Optional[AuthUser]) -> Actor:
    """Map a token to an order actor. No token means an anonymous customer."""
    if user is None:
        return Actor(role=ActorRole.CUSTOMER)
    if user.is_operator:
        return Actor(role=ActorRole.SYSTEM, email=user.email)
    if user.store_id:
        return Actor(
            role=ActorRole.OWNER,
            store_id=uuid.UUID(user.store_id),
            email=user.email,
        )
    return Actor(role=ActorRole.CUSTOMER, email=user.email)


def ensure_store_access(user: AuthUser, store_id: uuid.UUID) -> None:
    if user.is_operator:
        return
    if not user.store_id or uuid.UUID(user.store_id) != store_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only manage your own store",
        )


async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

"""Withdrawals router: passcodes, payout requests and operator review."""

import uuid

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import require_admin, require_store_owner
from libs.auth.models import AuthUser
from services.storefront_service.routers._helpers import (
    ensure_store_access,
    get_engine,
)
from services.storefront_service.schemas import (
    PasscodeRequest,
    WithdrawalCreate,
    WithdrawalReject,
    WithdrawalResponse,
)
from services.storefront_service.services.engine import StorefrontEngine

router = APIRouter(tags=["withdrawals"])


@router.post("/passcodes", status_code=status.HTTP_202_ACCEPTED)
async def issue_passcode(
    payload: PasscodeRequest,
    current_user: AuthUser = Depends(require_store_owner),
    engine: StorefrontEngine = Depends(get_engine),
):
    """Email a one-time passcode. The code itself is never returned."""
    await engine.issue_passcode(payload.email, payload.purpose)
    return {"sent": True}


@router.post(
    "/stores/{store_id}/withdrawals",
    response_model=WithdrawalResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_withdrawal(
    store_id: uuid.UUID,
    payload: WithdrawalCreate,
    current_user: AuthUser = Depends(require_store_owner),
    engine: StorefrontEngine = Depends(get_engine),
):
    ensure_store_access(current_user, store_id)
    return await engine.request_withdrawal(
        store_id, payload.amount, payload.bank_account_id, payload.otp
    )


@router.post(
    "/admin/withdrawals/{request_id}/approve", response_model=WithdrawalResponse
)
async def approve_withdrawal(
    request_id: uuid.UUID,
    _admin: AuthUser = Depends(require_admin),
    engine: StorefrontEngine = Depends(get_engine),
):
    return await engine.approve_withdrawal(request_id)


@router.post("/admin/withdrawals/{request_id}/reject", response_model=WithdrawalResponse)
async def reject_withdrawal(
    request_id: uuid.UUID,
    payload: WithdrawalReject,
    _admin: AuthUser = Depends(require_admin),
    engine: StorefrontEngine = Depends(get_engine),
):
    return await engine.reject_withdrawal(request_id, payload.reason)

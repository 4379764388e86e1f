"""Referral callables - code validation and redemption."""

from __future__ import annotations

import asyncio
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from ..dependencies import get_referral_ledger, verify_firebase_token
from ..middleware.rate_limit import rate_limit_callable
from ..models import (
    CallableRequest,
    CallableResponse,
    ErrorResponse,
    ReferralCodeData,
    ReferralRedeemData,
    parse_data,
)
from ..services.referrals import ReferralLedger

router = APIRouter()


@router.post(
    "/callable/validateReferralCode",
    response_model=CallableResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
@rate_limit_callable
async def validate_referral_code(
    request: Request,
    payload: CallableRequest,
    decoded_token: Dict[str, Any] = Depends(verify_firebase_token),
    referrals: ReferralLedger = Depends(get_referral_ledger),
) -> Dict[str, Any]:
    """Unknown codes are a normal outcome and return ``referrerId: null``."""
    data = parse_data(ReferralCodeData, payload.data)
    referrer_id = await asyncio.to_thread(referrals.validate_code, data.code)
    return {"result": {"referrerId": referrer_id}}


@router.post(
    "/callable/rewardReferrer",
    response_model=CallableResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
@rate_limit_callable
async def reward_referrer(
    request: Request,
    payload: CallableRequest,
    decoded_token: Dict[str, Any] = Depends(verify_firebase_token),
    referrals: ReferralLedger = Depends(get_referral_ledger),
) -> Dict[str, Any]:
    data = parse_data(ReferralRedeemData, payload.data)
    success = await asyncio.to_thread(referrals.redeem, decoded_token["uid"], data.referrerId)
    return {"result": {"success": success}}

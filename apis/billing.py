from typing import Dict

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

from core.auth import get_current_user
from core.billing_service import create_order, get_subscription_overview, verify_payment
from core.db import DB
from core.plan_service import PAID_TIERS, get_plan_catalog

router = APIRouter(tags=["支付订阅"])

_TIER_PATTERN = "^(" + "|".join(PAID_TIERS) + ")$"


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    amount: int = Field(ge=1, le=1_000_000)
    tier: str = Field(pattern=_TIER_PATTERN)
    duration_months: int = Field(alias="durationMonths", ge=1, le=12)


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    razorpay_order_id: str = Field(min_length=1, max_length=120)
    razorpay_payment_id: str = Field(min_length=1, max_length=120)
    razorpay_signature: str = Field(min_length=1, max_length=256)
    tier: str = Field(pattern=_TIER_PATTERN)
    duration_months: int = Field(alias="durationMonths", ge=1, le=12)


def _create_order(user_id: str, payload: CreateOrderRequest) -> Dict:
    session = DB.get_session()
    try:
        return create_order(
            session,
            user_id,
            tier=payload.tier,
            amount=payload.amount,
            duration_months=payload.duration_months,
        )
    finally:
        session.close()


def _verify_payment(user_id: str, payload: VerifyPaymentRequest) -> Dict:
    session = DB.get_session()
    try:
        return verify_payment(
            session,
            user_id,
            provider_order_id=payload.razorpay_order_id,
            provider_payment_id=payload.razorpay_payment_id,
            provider_signature=payload.razorpay_signature,
            tier=payload.tier,
            duration_months=payload.duration_months,
        )
    finally:
        session.close()


def _overview(user_id: str) -> Dict:
    session = DB.get_session()
    try:
        return get_subscription_overview(session, user_id)
    finally:
        session.close()


@router.post("/create-razorpay-order", summary="创建 Razorpay 订单")
async def create_razorpay_order(payload: CreateOrderRequest, current_user: dict = Depends(get_current_user)):
    order = await run_in_threadpool(_create_order, current_user["user_id"], payload)
    return {
        "orderId": order["provider_order_id"],
        "amount": order["amount"],
        "currency": order["currency"],
        "keyId": order["key_id"],
    }


@router.post("/verify-razorpay-payment", summary="校验支付签名并开通订阅")
async def verify_razorpay_payment(payload: VerifyPaymentRequest, current_user: dict = Depends(get_current_user)):
    result = await run_in_threadpool(_verify_payment, current_user["user_id"], payload)
    return {"success": bool(result.get("success"))}


@router.get("/subscription", summary="获取当前订阅与支付记录")
async def subscription_overview(current_user: dict = Depends(get_current_user)):
    return await run_in_threadpool(_overview, current_user["user_id"])


@router.get("/billing/plans", summary="获取套餐价目表")
async def billing_plans():
    return {"plans": get_plan_catalog()}

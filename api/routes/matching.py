"""
匹配额度API路由 - 额度包、结账、汇总与退款
"""
from fastapi import APIRouter, Depends

from api.dependencies import (
    get_checkout_service,
    get_current_user_id,
    get_ledger_service,
    get_refund_service,
)
from application.dto import CheckoutSessionCreateDTO
from application.services.checkout_service import CheckoutService
from application.services.credit_ledger_service import CreditLedgerService
from application.services.refund_service import RefundService
from core.i18n import t
from core.response import success_response

router = APIRouter(
    prefix="/matching",
    tags=["Matching credits"]
)


@router.get("/packs", summary="List match packs")
async def list_packs(service: CreditLedgerService = Depends(get_ledger_service)):
    """可购买的额度包（价格为含手续费前的基础价）"""
    packs = service.list_packs()
    return success_response(data=[p.model_dump(by_alias=True, mode="json") for p in packs])


@router.post("/payments/checkout-session", summary="Create checkout session")
async def create_checkout_session(
    payload: CheckoutSessionCreateDTO,
    user_id: int = Depends(get_current_user_id),
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    为当前用户创建支付渠道结账会话

    - **planType**: 额度包类型（PACK_DISCOVERY / PACK_STANDARD / PACK_PRO）
    """
    session = await service.create_checkout_session(user_id, payload.plan_type)
    return success_response(
        data=session.model_dump(by_alias=True, mode="json"),
        message=t("matching.checkout.created", default="Checkout session created"),
    )


@router.get("/summary", summary="Matching credits summary")
async def get_summary(
    user_id: int = Depends(get_current_user_id),
    service: CreditLedgerService = Depends(get_ledger_service),
):
    summary = await service.get_matching_summary(user_id)
    return success_response(data=summary.model_dump(by_alias=True, mode="json"))


@router.post("/refund", summary="Refund unused matches")
async def request_refund(
    user_id: int = Depends(get_current_user_id),
    service: RefundService = Depends(get_refund_service),
):
    """退还所有未使用的额度；成功后进入重新购买冷却期"""
    result = await service.request_refund(user_id)
    return success_response(data=result.model_dump(by_alias=True, mode="json"), message=result.message)

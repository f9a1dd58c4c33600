"""
API依赖项 - 认证和服务装配
"""
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer, HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional

from api.middleware.request_id import bind_user_id
from application.ports.notifier import Notifier
from application.ports.payment_gateway import PaymentGateway
from application.services.checkout_service import CheckoutService
from application.services.credit_ledger_service import CreditLedgerService
from application.services.refund_service import RefundService
from application.services.token_service import TokenService
from application.services.webhook_service import WebhookService
from core.exceptions import UnauthorizedException
from infrastructure.external.payments import get_payment_gateway
from infrastructure.notifications import CeleryNotifier
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

# OAuth2 bearer for Swagger UI (tokens are issued by the account service)
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/v1/auth/login",
    scheme_name="OAuth2",
    description="Bearer token issued by the account service",
    auto_error=False,
)

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


async def get_token(
    oauth2_token: Optional[str] = Depends(oauth2_scheme),
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> str:
    """从OAuth2或Bearer token中提取token"""
    # 优先使用OAuth2 token (from Swagger UI)
    if oauth2_token:
        return oauth2_token

    # 然后尝试Bearer token (from direct API calls)
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials

    raise UnauthorizedException("Authentication credentials were not provided")


def get_token_service() -> TokenService:
    return TokenService()


async def get_current_user_id(
    token: str = Depends(get_token),
    tokens: TokenService = Depends(get_token_service),
) -> int:
    """解析当前用户ID；封禁/KYC 状态由服务层从数据库重新读取"""
    user_id = tokens.verify_access_token(token)
    if user_id is None:
        raise UnauthorizedException("Invalid authentication credentials")
    bind_user_id(user_id)
    return user_id


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_notifier() -> Notifier:
    return CeleryNotifier()


async def get_ledger_service() -> CreditLedgerService:
    return CreditLedgerService(uow_factory=SQLAlchemyUnitOfWork)


async def get_checkout_service(gateway: PaymentGateway = Depends(get_gateway)) -> CheckoutService:
    return CheckoutService(uow_factory=SQLAlchemyUnitOfWork, gateway=gateway)


async def get_refund_service(
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> RefundService:
    return RefundService(uow_factory=SQLAlchemyUnitOfWork, gateway=gateway, notifier=notifier)


async def get_webhook_service(
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> WebhookService:
    return WebhookService(uow_factory=SQLAlchemyUnitOfWork, gateway=gateway, notifier=notifier)

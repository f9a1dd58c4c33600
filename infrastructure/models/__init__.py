"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .listing import HomeModel, SearchModel
from .intent import IntentModel
from .payment import MatchPaymentModel, PaymentTransactionModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "HomeModel",
    "SearchModel",
    "IntentModel",
    "MatchPaymentModel",
    "PaymentTransactionModel",
]

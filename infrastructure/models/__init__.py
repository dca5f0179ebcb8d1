"""Infrastructure models package exports."""
from .base import Base, metadata
from .wallet import WalletModel, LedgerEntryModel
from .catalog import CatalogItemModel
from .order import OrderModel, SubscriptionModel
from .referral import ReferralModel, ReferralCommissionModel

__all__ = [
    "Base",
    "metadata",
    "WalletModel",
    "LedgerEntryModel",
    "CatalogItemModel",
    "OrderModel",
    "SubscriptionModel",
    "ReferralModel",
    "ReferralCommissionModel",
]

"""Data models."""
from thumbgen.core.models.subscription_models import (
    SubscriptionPlan,
    TransactionSource,
    SubscriptionProfile,
    CreditsInfo,
    SubscriptionInfo,
    PurchaseTransaction,
    Product,
    PurchaseAttempt,
)
from thumbgen.core.models.iap_events import (
    IAPEvent,
    Connected,
    ProductsLoaded,
    PurchaseStarted,
    PurchaseGranted,
    PurchaseFailed,
    PurchaseCancelled,
    RestoreCompleted,
)

__all__ = [
    "SubscriptionPlan",
    "TransactionSource",
    "SubscriptionProfile",
    "CreditsInfo",
    "SubscriptionInfo",
    "PurchaseTransaction",
    "Product",
    "PurchaseAttempt",
    "IAPEvent",
    "Connected",
    "ProductsLoaded",
    "PurchaseStarted",
    "PurchaseGranted",
    "PurchaseFailed",
    "PurchaseCancelled",
    "RestoreCompleted",
]

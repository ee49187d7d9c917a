"""Pydantic models for subscriptions, credits and store transactions."""
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, field_validator


class SubscriptionPlan(str, Enum):
    """Subscription plans sold in the app."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class TransactionSource(str, Enum):
    """Where an observed store transaction came from."""
    LISTENER = "listener"
    RESTORE = "restore"
    ORPHAN = "orphan"
    # found by polling the purchase history while a purchase waits
    FALLBACK = "fallback"


class SubscriptionProfile(BaseModel):
    """Subscription and credit fields of a row in the `profiles` table."""
    subscription_plan: Optional[SubscriptionPlan] = None
    subscription_start_date: Optional[datetime] = None
    last_credit_reset: Optional[datetime] = None
    is_pro_version: bool = False
    credits_current: Optional[int] = None
    credits_max: Optional[int] = None

    @field_validator("subscription_plan", mode="before")
    @classmethod
    def unknown_plan_is_none(cls, v):
        if isinstance(v, str) and v not in {plan.value for plan in SubscriptionPlan}:
            return None
        return v

    @field_validator("is_pro_version", mode="before")
    @classmethod
    def null_is_false(cls, v):
        return bool(v) if v is not None else False


class CreditsInfo(BaseModel):
    """Locally cached view of the profile's credit fields."""
    current: int = 0
    max: int = 0
    last_reset_date: Optional[datetime] = None


class SubscriptionInfo(BaseModel):
    """Subscription summary cached on the device."""
    is_active: bool
    product_id: str
    purchase_date: str
    expiry_date: Optional[str] = None


def _field(raw: Any, *names: str) -> Any:
    """Read the first present attribute/key out of a native payload."""
    for name in names:
        if isinstance(raw, Mapping):
            value = raw.get(name)
        else:
            value = getattr(raw, name, None)
        if value is not None:
            return value
    return None


class PurchaseTransaction(BaseModel):
    """One transaction observed at the store. Never mutated once created."""
    transaction_id: Optional[str] = Field(None, description="Store-assigned id, the dedup key")
    product_id: str = Field(..., description="Purchased product, maps to a plan")
    purchase_time: Optional[int] = Field(None, description="Purchase time (Unix millis) when the store reports it")
    raw: Any = Field(None, exclude=True, description="Native payload, handed back when finishing")

    @classmethod
    def from_native(cls, raw: Any) -> "PurchaseTransaction":
        transaction_id = _field(raw, "transactionId", "transaction_id", "orderId", "order_id")
        return cls(
            transaction_id=str(transaction_id) if transaction_id is not None else None,
            product_id=str(_field(raw, "productId", "product_id") or ""),
            purchase_time=_field(raw, "transactionDate", "purchase_time"),
            raw=raw,
        )


class Product(BaseModel):
    """Product metadata as reported by the store."""
    product_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    currency: Optional[str] = None
    raw: Any = Field(None, exclude=True)

    @classmethod
    def from_native(cls, raw: Any) -> "Product":
        price = _field(raw, "localizedPrice", "price")
        return cls(
            product_id=str(_field(raw, "productId", "product_id", "sku") or ""),
            title=_field(raw, "title"),
            description=_field(raw, "description"),
            price=str(price) if price is not None else None,
            currency=_field(raw, "currency", "priceCurrencyCode"),
            raw=raw,
        )


class PurchaseAttempt(BaseModel):
    """The client's in-memory record of a purchase it just started."""
    product_id: Optional[str] = None
    started_at: float
    # Wall clock start (Unix millis), compared with store purchase times
    started_at_ms: Optional[int] = None
    # True when rebuilt from the persisted flag after a restart
    resumed: bool = False

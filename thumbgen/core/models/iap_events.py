"""Events the purchase service reports to the UI layer."""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from thumbgen.core.models.subscription_models import SubscriptionPlan


class Connected(BaseModel):
    kind: Literal["connected"] = "connected"


class ProductsLoaded(BaseModel):
    kind: Literal["products_loaded"] = "products_loaded"
    count: int


class PurchaseStarted(BaseModel):
    kind: Literal["purchase_started"] = "purchase_started"
    product_id: str


class PurchaseGranted(BaseModel):
    """
    Entitlement was written for a transaction.

    `orphaned` is True for transactions recovered by the startup sweep; the UI
    only navigates for purchases the user just made.
    """
    kind: Literal["purchase_granted"] = "purchase_granted"
    product_id: str
    plan: SubscriptionPlan
    orphaned: bool = False


class PurchaseFailed(BaseModel):
    kind: Literal["purchase_failed"] = "purchase_failed"
    # a PurchaseErrorKind value
    reason: str
    message: Optional[str] = None


class PurchaseCancelled(BaseModel):
    kind: Literal["purchase_cancelled"] = "purchase_cancelled"


class RestoreCompleted(BaseModel):
    kind: Literal["restore_completed"] = "restore_completed"
    count: int


IAPEvent = Annotated[
    Union[
        Connected,
        ProductsLoaded,
        PurchaseStarted,
        PurchaseGranted,
        PurchaseFailed,
        PurchaseCancelled,
        RestoreCompleted,
    ],
    Field(discriminator="kind"),
]

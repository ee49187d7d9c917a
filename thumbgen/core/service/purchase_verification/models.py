"""
Request and response models of the credit and receipt endpoints.
"""
from pydantic import BaseModel, Field
from typing import Optional

from thumbgen.core.models.subscription_models import SubscriptionPlan


class ValidateReceiptRequest(BaseModel):
    """Request model for receipt validation."""
    product_id: str
    transaction_id: str
    receipt: Optional[str] = None  # raw store receipt, kept for auditing
    source: Optional[str] = None  # listener, restore or orphan


class ValidateReceiptResponse(BaseModel):
    """Response model for receipt validation."""
    success: bool
    plan: SubscriptionPlan
    credits_max: int


class ManageCreditsRequest(BaseModel):
    """Request model for the manage-credits endpoint."""
    action: str = Field(..., description="get, deduct or reset")
    amount: Optional[int] = Field(None, ge=1, description="Credits to deduct, defaults to 1")


class CreditsResponse(BaseModel):
    """Response model for the manage-credits endpoint."""
    success: Optional[bool] = None
    current: int
    max: int

"""Server-side credit management: get, deduct and reset a user's credits."""
from datetime import datetime, timezone
from typing import Optional, Tuple

import logfire
from supabase import Client

from thumbgen.core.models.subscription_models import SubscriptionProfile
from thumbgen.core.service.credits.credit_reset_logic import get_credits_for_plan, should_reset_credits
from thumbgen.core.service.purchase_verification.verification_service import VerificationService


class InsufficientCreditsError(Exception):
    """The balance does not cover the requested deduction."""

    def __init__(self, current: int, max_credits: int):
        super().__init__("Insufficient credits")
        self.current = current
        self.max_credits = max_credits


class ManageCreditsService:
    """Credit operations for one authenticated user, on a service role client."""

    def __init__(self, supabase_client: Client, user_uuid: str):
        self.supabase = supabase_client
        self.user_uuid = user_uuid

    def _reset_to_plan(self, profile: SubscriptionProfile, now: datetime) -> Tuple[int, int]:
        reset_max = get_credits_for_plan(profile.subscription_plan)
        VerificationService.update_user_credits(self.supabase, self.user_uuid, {
            "credits_current": reset_max,
            "credits_max": reset_max,
            "last_credit_reset": now.isoformat(),
        })
        return reset_max, reset_max

    def load_credits(self, now: Optional[datetime] = None) -> Tuple[SubscriptionProfile, int, int]:
        """
        Read the balance, resetting it first when the subscription cycle says so
        and initialising it from the plan when the columns are still empty.

        Returns:
            Tuple of (profile, current, max)
        """
        now = now or datetime.now(timezone.utc)
        profile = VerificationService.get_user_credit_profile(self.supabase, self.user_uuid)

        if should_reset_credits(profile, now=now):
            logfire.info("Auto-resetting credits based on subscription cycle", extra={"user_uuid": self.user_uuid})
            current, max_credits = self._reset_to_plan(profile, now)
            return profile, current, max_credits

        if profile.credits_current is None or profile.credits_max is None:
            # No free plan: without a subscription the allotment is 0
            max_credits = get_credits_for_plan(profile.subscription_plan) if profile.is_pro_version else 0
            VerificationService.update_user_credits(self.supabase, self.user_uuid, {
                "credits_current": max_credits,
                "credits_max": max_credits,
            })
            return profile, max_credits, max_credits

        return profile, profile.credits_current, profile.credits_max

    def get(self) -> Tuple[int, int]:
        _, current, max_credits = self.load_credits()
        return current, max_credits

    def deduct(self, amount: int = 1) -> Tuple[int, int]:
        """
        Deduct `amount` credits.

        Raises:
            InsufficientCreditsError: If the balance is lower than `amount`
        """
        _, current, max_credits = self.load_credits()
        if current < amount:
            raise InsufficientCreditsError(current, max_credits)

        new_credits = current - amount
        VerificationService.update_user_credits(self.supabase, self.user_uuid, {"credits_current": new_credits})
        logfire.info(f"Deducted {amount} credits from user {self.user_uuid}, {new_credits} left")
        return new_credits, max_credits

    def reset(self) -> Tuple[int, int]:
        """Reset credits to the plan maximum (manual reset)."""
        profile = VerificationService.get_user_credit_profile(self.supabase, self.user_uuid)
        return self._reset_to_plan(profile, datetime.now(timezone.utc))

"""
Entitlement writer.

Persists subscription and credit state to the user's row in the Supabase
`profiles` table and mirrors it into the device cache.

Known limitation: credit deduction is read-then-write without optimistic
concurrency control. It assumes a single active client per user; two devices
deducting at the same time can both succeed against the same balance.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import logfire
from supabase import Client

from thumbgen.core.models.subscription_models import CreditsInfo, SubscriptionPlan, SubscriptionProfile
from thumbgen.core.service.credits.credit_reset_logic import get_credits_for_plan, should_reset_credits
from thumbgen.core.service.iap.errors import EntitlementWriteError
from thumbgen.core.service.local_storage.subscription_storage import SubscriptionStorage
from thumbgen.core.service.supabase_connectors.supabase_client import (
    PROFILES_TABLE_NAME,
    PROFILE_CREDIT_COLUMNS,
)


def build_entitlement_update(
    plan: SubscriptionPlan,
    product_id: str,
    subscription_id: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """The full profile update written whenever a subscription is granted."""
    now_iso = (now or datetime.now(timezone.utc)).isoformat()
    credits_max = get_credits_for_plan(plan)
    return {
        "subscription_plan": plan.value,
        "subscription_id": subscription_id,
        "is_pro_version": True,
        "product_id": product_id,
        "purchase_time": now_iso,
        "credits_current": credits_max,
        "credits_max": credits_max,
        "subscription_start_date": now_iso,
        "last_credit_reset": now_iso,
    }


class EntitlementWriter:
    """Writes entitlements and credits for the signed-in user."""

    def __init__(
        self,
        supabase_client: Client,
        storage: SubscriptionStorage,
        table_name: str = PROFILES_TABLE_NAME,
    ):
        self.supabase = supabase_client
        self.storage = storage
        self.table_name = table_name

    async def get_current_user_id(self) -> Optional[str]:
        """Id of the authenticated user, or None without a session."""
        try:
            response = await asyncio.to_thread(self.supabase.auth.get_user)
        except Exception as e:
            logfire.warning(f"Could not resolve the authenticated user: {str(e)}")
            return None
        user = getattr(response, "user", None) if response else None
        return user.id if user else None

    async def _update_profile(self, user_id: str, update_data: Dict[str, Any]) -> Dict[str, Any]:
        def execute():
            return self.supabase.from_(self.table_name)\
                .update(update_data)\
                .eq("id", user_id)\
                .execute()

        try:
            result = await asyncio.to_thread(execute)
        except Exception as e:
            logfire.error(
                f"Profile update failed: {str(e)}",
                extra={"user_id": user_id, "update_data": update_data}
            )
            raise EntitlementWriteError(f"Profile update failed: {str(e)}") from e

        if not result.data:
            logfire.error(f"Profile update matched no row", extra={"user_id": user_id})
            raise EntitlementWriteError(f"Profile not found for user {user_id}")

        return result.data[0]

    async def get_profile(self, user_id: str) -> SubscriptionProfile:
        """
        Read the subscription/credit columns of the user's profile.

        Raises:
            ValueError: If the user has no profile row
        """
        def execute():
            return self.supabase.from_(self.table_name)\
                .select(PROFILE_CREDIT_COLUMNS)\
                .eq("id", user_id)\
                .single()\
                .execute()

        result = await asyncio.to_thread(execute)
        if not result.data:
            raise ValueError(f"No profile found for user {user_id}")
        return SubscriptionProfile.model_validate(result.data)

    async def grant_entitlement(
        self,
        user_id: str,
        plan: SubscriptionPlan,
        product_id: str,
        transaction_id: str,
    ) -> Dict[str, Any]:
        """
        Write the subscription and a full credit allotment for `plan`.

        Raises:
            EntitlementWriteError: If the remote write fails; the caller must not
                acknowledge the transaction in that case
        """
        now = datetime.now(timezone.utc)
        update_data = build_entitlement_update(plan, product_id, transaction_id, now)

        logfire.info(
            f"Granting {plan.value} entitlement to user {user_id}",
            extra={"transaction_id": transaction_id, "product_id": product_id}
        )
        await self._update_profile(user_id, update_data)

        await self.storage.record_entitlement(
            plan=plan.value,
            subscription_id=transaction_id,
            product_id=product_id,
            credits_max=update_data["credits_max"],
            granted_at=now,
        )
        return update_data

    async def deduct_credit(self, user_id: Optional[str] = None, amount: int = 1) -> bool:
        """
        Take `amount` credits from the user's balance.

        Returns:
            True if deducted, False if the balance is insufficient or the
            profile could not be read or written
        """
        if amount < 1:
            raise ValueError("amount must be at least 1")

        user_id = user_id or await self.get_current_user_id()
        if not user_id:
            logfire.warning("Cannot deduct credits without an authenticated user")
            return False

        try:
            profile = await self.get_profile(user_id)
        except Exception as e:
            logfire.error(f"Could not read credits for user {user_id}: {str(e)}")
            return False

        current = profile.credits_current or 0
        if current < amount:
            logfire.info(f"Insufficient credits for user {user_id}: {current} < {amount}")
            return False

        try:
            await self._update_profile(user_id, {"credits_current": current - amount})
        except EntitlementWriteError:
            return False

        await self.storage.save_credits(CreditsInfo(
            current=current - amount,
            max=profile.credits_max or 0,
            last_reset_date=profile.last_credit_reset,
        ))
        return True

    async def get_credits(self, user_id: Optional[str] = None) -> CreditsInfo:
        """Credits from the remote profile, or from the cache when offline or signed out."""
        user_id = user_id or await self.get_current_user_id()
        if not user_id:
            return await self.storage.get_cached_credits()

        try:
            profile = await self.get_profile(user_id)
        except Exception as e:
            logfire.warning(f"Falling back to cached credits: {str(e)}", extra={"user_id": user_id})
            return await self.storage.get_cached_credits()

        credits = CreditsInfo(
            current=profile.credits_current or 0,
            max=profile.credits_max or 0,
            last_reset_date=profile.last_credit_reset,
        )
        await self.storage.save_credits(credits)
        return credits

    async def reset_credits(self, user_id: str, plan: Optional[SubscriptionPlan]) -> CreditsInfo:
        """Top credits back up to the plan maximum and stamp the reset time."""
        now = datetime.now(timezone.utc)
        credits_max = get_credits_for_plan(plan)
        await self._update_profile(user_id, {
            "credits_current": credits_max,
            "credits_max": credits_max,
            "last_credit_reset": now.isoformat(),
        })
        credits = CreditsInfo(current=credits_max, max=credits_max, last_reset_date=now)
        await self.storage.save_credits(credits)
        logfire.info(f"Reset credits of user {user_id} to {credits_max}")
        return credits

    async def apply_scheduled_reset(self, user_id: Optional[str] = None, now: Optional[datetime] = None) -> bool:
        """Reset credits if the subscription cycle says so. Returns whether a reset happened."""
        user_id = user_id or await self.get_current_user_id()
        if not user_id:
            return False

        try:
            profile = await self.get_profile(user_id)
        except Exception as e:
            logfire.warning(f"Skipping scheduled credit reset: {str(e)}", extra={"user_id": user_id})
            return False

        if not should_reset_credits(profile, now=now):
            return False

        logfire.info("Auto-resetting credits based on subscription cycle", extra={"user_id": user_id})
        await self.reset_credits(user_id, profile.subscription_plan)
        return True

"""
Device-side cache of subscription and credit state.

The remote profile is the source of truth; this cache only backs offline
display and is overwritten every time the remote profile is read or written.
"""
import json
from datetime import datetime
from typing import Optional

import logfire
from pydantic import ValidationError

from thumbgen.core.models.subscription_models import CreditsInfo, SubscriptionInfo
from thumbgen.core.service.local_storage.local_store import LocalStore

SUBSCRIPTION_KEY = "user_subscription"
CREDITS_KEY = "user_credits"
PROFILE_PLAN_KEY = "profile.subscription_plan"
PROFILE_SUBSCRIPTION_ID_KEY = "profile.subscription_id"
PROFILE_IS_PRO_KEY = "profile.is_pro_version"


class SubscriptionStorage:
    """Reads and writes the cached subscription info and credits."""

    def __init__(self, store: LocalStore):
        self.store = store

    async def save_subscription_info(self, subscription_info: SubscriptionInfo) -> None:
        try:
            await self.store.set_item(SUBSCRIPTION_KEY, subscription_info.model_dump_json())
        except OSError as e:
            logfire.error(f"Error saving subscription info: {str(e)}")
            raise

    async def get_subscription_info(self) -> Optional[SubscriptionInfo]:
        stored = await self.store.get_item(SUBSCRIPTION_KEY)
        if not stored:
            return None
        try:
            return SubscriptionInfo.model_validate_json(stored)
        except ValidationError as e:
            logfire.error(f"Error reading subscription info: {str(e)}")
            return None

    async def clear_subscription_info(self) -> None:
        await self.store.remove_item(SUBSCRIPTION_KEY)

    async def is_user_subscribed(self) -> bool:
        # Only the cached flag; the stores are not consulted here
        subscription_info = await self.get_subscription_info()
        if not subscription_info:
            return False
        return subscription_info.is_active

    async def save_credits(self, credits: CreditsInfo) -> None:
        await self.store.set_item(CREDITS_KEY, credits.model_dump_json())

    async def get_cached_credits(self) -> CreditsInfo:
        stored = await self.store.get_item(CREDITS_KEY)
        if not stored:
            return CreditsInfo()
        try:
            return CreditsInfo.model_validate_json(stored)
        except ValidationError as e:
            logfire.warning(f"Cached credits are corrupt, ignoring them: {str(e)}")
            return CreditsInfo()

    async def save_profile_cache(self, plan: str, subscription_id: str, is_pro_version: bool) -> None:
        await self.store.multi_set([
            (PROFILE_PLAN_KEY, plan),
            (PROFILE_SUBSCRIPTION_ID_KEY, subscription_id),
            (PROFILE_IS_PRO_KEY, json.dumps(is_pro_version)),
        ])

    async def record_entitlement(
        self,
        plan: str,
        subscription_id: str,
        product_id: str,
        credits_max: int,
        granted_at: datetime,
    ) -> None:
        """Mirror a freshly granted entitlement into the cache."""
        await self.save_profile_cache(plan, subscription_id, True)
        await self.save_credits(CreditsInfo(current=credits_max, max=credits_max, last_reset_date=granted_at))
        await self.save_subscription_info(SubscriptionInfo(
            is_active=True,
            product_id=product_id,
            purchase_date=granted_at.isoformat(),
        ))

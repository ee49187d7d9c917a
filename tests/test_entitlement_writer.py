from datetime import datetime, timedelta, timezone

import pytest

from tests.conftest import USER_ID
from thumbgen.core.models.subscription_models import CreditsInfo, SubscriptionPlan
from thumbgen.core.service.credits.entitlement_writer import build_entitlement_update
from thumbgen.core.service.iap.errors import EntitlementWriteError


class TestBuildEntitlementUpdate:

    def test_full_update(self):
        now = datetime(2024, 4, 2, 8, 30, tzinfo=timezone.utc)
        update = build_entitlement_update(SubscriptionPlan.MONTHLY, "thumbnail.monthly", "tx-1", now)

        assert update == {
            "subscription_plan": "monthly",
            "subscription_id": "tx-1",
            "is_pro_version": True,
            "product_id": "thumbnail.monthly",
            "purchase_time": now.isoformat(),
            "credits_current": 75,
            "credits_max": 75,
            "subscription_start_date": now.isoformat(),
            "last_credit_reset": now.isoformat(),
        }


class TestGrantEntitlement:
    """Test suite for EntitlementWriter.grant_entitlement."""

    @pytest.mark.asyncio
    async def test_grant_writes_profile_and_cache(self, writer, supabase, storage):
        await writer.grant_entitlement(USER_ID, SubscriptionPlan.YEARLY, "thumbnail.yearly", "tx-7")

        profile = supabase.profile(USER_ID)
        assert profile["credits_current"] == 90
        assert profile["subscription_id"] == "tx-7"
        cached = await storage.get_cached_credits()
        assert (cached.current, cached.max) == (90, 90)
        assert await storage.store.get_item("profile.subscription_plan") == "yearly"

    @pytest.mark.asyncio
    async def test_write_failure_raises(self, writer, supabase, storage):
        supabase.fail_writes = True

        with pytest.raises(EntitlementWriteError) as exc_info:
            await writer.grant_entitlement(USER_ID, SubscriptionPlan.YEARLY, "thumbnail.yearly", "tx-7")

        assert exc_info.value.retryable is True
        assert await storage.get_subscription_info() is None

    @pytest.mark.asyncio
    async def test_missing_profile_raises(self, writer):
        with pytest.raises(EntitlementWriteError):
            await writer.grant_entitlement("someone-else", SubscriptionPlan.WEEKLY, "thumbnail.weekly", "tx-8")

    @pytest.mark.asyncio
    async def test_current_user(self, writer, supabase):
        assert await writer.get_current_user_id() == USER_ID
        supabase.user_id = None
        assert await writer.get_current_user_id() is None


class TestCredits:
    """Test suite for deducting, reading and resetting credits."""

    @pytest.mark.asyncio
    async def test_deduct_credit(self, writer, supabase, storage):
        supabase.profile(USER_ID).update(credits_current=3, credits_max=10)

        assert await writer.deduct_credit(amount=2) is True

        assert supabase.profile(USER_ID)["credits_current"] == 1
        assert (await storage.get_cached_credits()).current == 1

    @pytest.mark.asyncio
    async def test_deduct_insufficient(self, writer, supabase):
        supabase.profile(USER_ID).update(credits_current=1, credits_max=10)

        assert await writer.deduct_credit(amount=2) is False
        assert supabase.writes == []

    @pytest.mark.asyncio
    async def test_deduct_write_failure(self, writer, supabase):
        supabase.profile(USER_ID).update(credits_current=5, credits_max=10)
        supabase.fail_writes = True

        assert await writer.deduct_credit() is False

    @pytest.mark.asyncio
    async def test_deduct_rejects_non_positive_amount(self, writer):
        with pytest.raises(ValueError):
            await writer.deduct_credit(amount=0)

    @pytest.mark.asyncio
    async def test_get_credits_falls_back_to_cache(self, writer, supabase, storage):
        await storage.save_credits(CreditsInfo(current=4, max=10))
        supabase.user_id = None

        credits = await writer.get_credits()

        assert (credits.current, credits.max) == (4, 10)

    @pytest.mark.asyncio
    async def test_scheduled_reset(self, writer, supabase):
        """Test that a weekly subscriber reset 8 days ago is topped back up to 10."""
        eight_days_ago = datetime.now(timezone.utc) - timedelta(days=8)
        supabase.profile(USER_ID).update(
            subscription_plan="weekly",
            is_pro_version=True,
            subscription_start_date=eight_days_ago.isoformat(),
            last_credit_reset=eight_days_ago.isoformat(),
            credits_current=0,
            credits_max=10,
        )

        assert await writer.apply_scheduled_reset() is True
        assert supabase.profile(USER_ID)["credits_current"] == 10
        assert await writer.apply_scheduled_reset() is False

"""
Credit reset logic.

Decides when a subscriber's credits are topped back up to the plan maximum.
Weekly plans reset every 7 days. Monthly and yearly plans both reset monthly:
either a new calendar month has started since the last reset or 30 days have
passed, whichever comes first (short months would otherwise never reset on
the 30 day rule alone).
"""
import calendar
from datetime import datetime, timedelta, timezone
from typing import Optional

from thumbgen.core.models.subscription_models import SubscriptionPlan, SubscriptionProfile

PLAN_CREDITS = {
    SubscriptionPlan.YEARLY: 90,
    SubscriptionPlan.MONTHLY: 75,
    SubscriptionPlan.WEEKLY: 10,
}

WEEKLY_RESET_DAYS = 7
MONTHLY_RESET_DAYS = 30


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _last_reset(profile: SubscriptionProfile) -> datetime:
    # never reset yet -> count from the start of the subscription
    return _as_utc(profile.last_credit_reset or profile.subscription_start_date)


def _is_active_subscriber(profile: SubscriptionProfile) -> bool:
    return bool(profile.is_pro_version and profile.subscription_plan and profile.subscription_start_date)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def should_reset_credits(profile: SubscriptionProfile, now: Optional[datetime] = None) -> bool:
    """
    Determine if credits should be reset based on subscription plan and dates.

    Args:
        profile: The user's subscription profile
        now: Evaluation time, defaults to the current UTC time

    Returns:
        True if credits should be reset, False otherwise
    """
    if not _is_active_subscriber(profile):
        return False

    now = _as_utc(now) if now else datetime.now(timezone.utc)
    last_reset = _last_reset(profile)
    days_elapsed = (now - last_reset).total_seconds() / 86400

    if profile.subscription_plan == SubscriptionPlan.WEEKLY:
        return days_elapsed >= WEEKLY_RESET_DAYS

    if profile.subscription_plan in (SubscriptionPlan.MONTHLY, SubscriptionPlan.YEARLY):
        months_since_reset = (now.year - last_reset.year) * 12 + (now.month - last_reset.month)
        return months_since_reset >= 1 or days_elapsed >= MONTHLY_RESET_DAYS

    return False


def get_next_reset_date(profile: SubscriptionProfile) -> Optional[datetime]:
    """
    Calculate the next reset date from the last reset (or the subscription start).

    Returns:
        The next reset time, or None if the profile has no active subscription
    """
    if not _is_active_subscriber(profile):
        return None

    last_reset = _last_reset(profile)

    if profile.subscription_plan == SubscriptionPlan.WEEKLY:
        return last_reset + timedelta(days=WEEKLY_RESET_DAYS)

    if profile.subscription_plan in (SubscriptionPlan.MONTHLY, SubscriptionPlan.YEARLY):
        return add_months(last_reset, 1)

    return None


def get_credits_for_plan(plan: Optional[str]) -> int:
    """Credit allotment of a plan, 0 for unknown plans or no plan."""
    if plan is None:
        return 0
    try:
        return PLAN_CREDITS[SubscriptionPlan(plan)]
    except ValueError:
        return 0


def plan_for_product_id(product_id: str) -> SubscriptionPlan:
    """
    Map a store product id to a plan by substring.

    Anything that mentions neither "monthly" nor "weekly" is treated as yearly.
    """
    lowered = (product_id or "").lower()
    if "monthly" in lowered:
        return SubscriptionPlan.MONTHLY
    if "weekly" in lowered:
        return SubscriptionPlan.WEEKLY
    return SubscriptionPlan.YEARLY

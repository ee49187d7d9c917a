import asyncio
from getpass import getpass

from thumbgen.core.models.subscription_models import SubscriptionPlan
from thumbgen.core.service.client_context import ClientContext
from thumbgen.core.service.credits.credit_reset_logic import get_next_reset_date
from thumbgen.core.service.supabase_connectors.supabase_client import (
    get_supabase_anon_client,
    sign_in_with_password,
)


def signed_in_context() -> ClientContext:
    client = get_supabase_anon_client()
    email = input("Enter the user email: ")
    password = getpass("Enter the password: ")
    sign_in_with_password(client, email, password)
    return ClientContext.create(supabase_client=client)


async def show_credits():
    context = signed_in_context()
    user_id = await context.writer.get_current_user_id()
    profile = await context.writer.get_profile(user_id)
    credits = await context.writer.get_credits(user_id)
    print(f"Plan: {profile.subscription_plan.value if profile.subscription_plan else 'none'}")
    print(f"Credits: {credits.current}/{credits.max}")
    print(f"Next reset: {get_next_reset_date(profile)}")


async def reset_credits():
    context = signed_in_context()
    user_id = await context.writer.get_current_user_id()
    plan = input("Enter the plan (weekly, monthly, yearly): ").strip().lower()
    credits = await context.writer.reset_credits(user_id, SubscriptionPlan(plan))
    print(f"Credits reset to {credits.current}/{credits.max}")


async def restore_purchases():
    context = signed_in_context()
    if not await context.iap.initialize():
        print("Store not available, set IAP_NATIVE_MODULE")
        return
    restored = await context.iap.restore_purchases()
    print(f"Restored {len(restored)} purchases")
    if not restored:
        print("Nothing was granted, check that you are signed in and look at the logs")
    await context.sign_out()


if __name__ == "__main__":
    # ask for an input to select one of the functions
    print("Select a function to run:")
    print("(1) show_credits")
    print("(2) reset_credits")
    print("(3) restore_purchases")
    choice = input("Enter the number of the function to run: ")
    match choice:
        case "1":
            asyncio.run(show_credits())

        case "2":
            asyncio.run(reset_credits())

        case "3":
            asyncio.run(restore_purchases())

        case _:
            print("Invalid choice")

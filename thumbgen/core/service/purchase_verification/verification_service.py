"""
Shared service for the credit and receipt endpoints.

This module contains common logic for:
- User authentication and UUID extraction
- Reading and writing the subscription/credit columns of a profile
"""
import logfire
from fastapi import HTTPException
from typing import Dict, Any, Tuple

from supabase import Client

from thumbgen.core.models.subscription_models import SubscriptionProfile
from thumbgen.core.service.credits.credit_reset_logic import plan_for_product_id
from thumbgen.core.service.credits.entitlement_writer import build_entitlement_update
from thumbgen.core.service.supabase_connectors.supabase_client import (
    get_supabase_client,
    PROFILES_TABLE_NAME,
    PROFILE_CREDIT_COLUMNS,
)


class VerificationService:
    """Service class for common profile operations of the HTTP endpoints."""

    @staticmethod
    def get_authenticated_user_uuid(jwt_token: str) -> Tuple[Any, str]:
        """
        Extract user UUID from JWT token.

        Args:
            jwt_token: JWT token from Authorization header

        Returns:
            Tuple of (supabase_client, user_uuid)

        Raises:
            HTTPException: If authentication fails
        """
        try:
            supabase = get_supabase_client(jwt_token=jwt_token)
            user = supabase.auth.get_user(jwt_token).user
            user_uuid = user.id
            logfire.info(f"Authenticated user UUID: {user_uuid}")
            return supabase, user_uuid
        except Exception as e:
            logfire.error(f"Authentication failed: {str(e)}")
            raise HTTPException(
                status_code=401,
                detail="Invalid or expired supabase authentication token"
            )

    @staticmethod
    def upsert_entitlement(
        supabase_client: Client,
        user_uuid: str,
        product_id: str,
        transaction_id: str
    ) -> Dict[str, Any]:
        """
        Write the full entitlement for a validated receipt.

        Args:
            supabase_client: Service role Supabase client (bypasses RLS)
            user_uuid: User's unique identifier
            product_id: Purchased product
            transaction_id: Store transaction id, stored as the subscription id

        Returns:
            The written profile fields

        Raises:
            HTTPException: If the upsert fails
        """
        plan = plan_for_product_id(product_id)
        update_data = build_entitlement_update(plan, product_id, transaction_id)
        row = {"id": user_uuid, **update_data, "updated_at": update_data["purchase_time"]}

        logfire.info(
            f"Upserting entitlement for user {user_uuid}",
            extra={"user_uuid": user_uuid, "product_id": product_id, "plan": plan.value}
        )

        try:
            result = supabase_client.from_(PROFILES_TABLE_NAME)\
                .upsert(row, on_conflict="id")\
                .execute()
        except Exception as e:
            logfire.error(f"Error upserting profile: {str(e)}", extra={"user_uuid": user_uuid})
            raise HTTPException(status_code=500, detail=f"Failed to update profile: {str(e)}")

        if not result.data:
            logfire.error(f"Profile upsert returned no row", extra={"user_uuid": user_uuid})
            raise HTTPException(status_code=500, detail="Failed to update profile")

        return update_data

    @staticmethod
    def get_user_credit_profile(
        supabase_client: Client,
        user_uuid: str
    ) -> SubscriptionProfile:
        """
        Get the subscription/credit columns of the user's profile.

        Raises:
            HTTPException: If the profile cannot be read
        """
        try:
            result = supabase_client.from_(PROFILES_TABLE_NAME)\
                .select(PROFILE_CREDIT_COLUMNS)\
                .eq("id", user_uuid)\
                .single()\
                .execute()
        except Exception as e:
            logfire.error(f"Error fetching profile: {str(e)}", extra={"user_uuid": user_uuid})
            raise HTTPException(status_code=500, detail="Failed to fetch user profile")

        if not result.data:
            logfire.error(f"Profile not found for UUID: {user_uuid}")
            raise HTTPException(status_code=404, detail="User profile not found")

        return SubscriptionProfile.model_validate(result.data)

    @staticmethod
    def update_user_credits(
        supabase_client: Client,
        user_uuid: str,
        update_data: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Update credit columns of the user's profile.

        Raises:
            HTTPException: If the update fails
        """
        try:
            result = supabase_client.from_(PROFILES_TABLE_NAME)\
                .update(update_data)\
                .eq("id", user_uuid)\
                .execute()
        except Exception as e:
            logfire.error(f"Error updating credits: {str(e)}", extra={"user_uuid": user_uuid})
            raise HTTPException(status_code=500, detail="Failed to update credits")

        if not result.data:
            raise HTTPException(status_code=404, detail="User profile not found")

        return result.data[0]

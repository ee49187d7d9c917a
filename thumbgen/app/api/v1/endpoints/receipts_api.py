"""
Receipt validation endpoint.
"""
import logfire
from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordBearer

from thumbgen.core.service.purchase_verification.models import ValidateReceiptRequest, ValidateReceiptResponse
from thumbgen.core.service.purchase_verification.verification_service import VerificationService
from thumbgen.core.service.supabase_connectors.supabase_client import get_supabase_service_role_client

router = APIRouter()

# OAuth2 scheme for JWT token authentication
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


@router.post(
    "/validate",
    response_model=ValidateReceiptResponse,
    summary="Validate a store receipt",
    description="Grants the subscription and credits of the purchased plan to the authenticated user"
)
async def validate_receipt(
    request: ValidateReceiptRequest,
    token: str = Depends(oauth2_scheme)
) -> ValidateReceiptResponse:
    """
    Record a purchase for the authenticated user.

    This endpoint:
    1. Authenticates the user via JWT token (OAuth2)
    2. Maps the product id to a plan
    3. Upserts the full subscription and credit record with the service role client

    Args:
        request: ValidateReceiptRequest with product_id, transaction_id and source
        token: JWT token from Authorization header (automatically extracted by Depends)

    Returns:
        ValidateReceiptResponse with the granted plan and credit allotment
    """
    _, user_uuid = VerificationService.get_authenticated_user_uuid(token)

    logfire.info(
        "Validating receipt",
        extra={
            "user_uuid": user_uuid,
            "product_id": request.product_id,
            "transaction_id": request.transaction_id,
            "source": request.source
        }
    )

    update_data = VerificationService.upsert_entitlement(
        get_supabase_service_role_client(),
        user_uuid,
        request.product_id,
        request.transaction_id,
    )

    logfire.info(f"Receipt validated successfully for user: {user_uuid}")

    return ValidateReceiptResponse(
        success=True,
        plan=update_data["subscription_plan"],
        credits_max=update_data["credits_max"],
    )

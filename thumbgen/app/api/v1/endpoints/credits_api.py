"""
Credit management endpoint.
"""
import logfire
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer

from thumbgen.core.service.credits.manage_credits_service import InsufficientCreditsError, ManageCreditsService
from thumbgen.core.service.purchase_verification.models import CreditsResponse, ManageCreditsRequest
from thumbgen.core.service.purchase_verification.verification_service import VerificationService
from thumbgen.core.service.supabase_connectors.supabase_client import get_supabase_service_role_client

router = APIRouter()

# OAuth2 scheme for JWT token authentication
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


@router.post(
    "/",
    response_model=CreditsResponse,
    response_model_exclude_none=True,
    summary="Get, deduct or reset credits",
    description="Reads the caller's credits (applying a due subscription-cycle reset first), "
                "deducts credits or resets them to the plan maximum"
)
async def manage_credits(
    request: ManageCreditsRequest,
    token: str = Depends(oauth2_scheme)
):
    """
    Manage the authenticated user's credits.

    Actions:
    - get: return current and max credits
    - deduct: take `amount` credits (default 1), 400 if the balance is too low
    - reset: set credits back to the plan maximum

    Args:
        request: ManageCreditsRequest with the action and optional amount
        token: JWT token from Authorization header (automatically extracted by Depends)

    Returns:
        CreditsResponse with the resulting balance
    """
    _, user_uuid = VerificationService.get_authenticated_user_uuid(token)
    service = ManageCreditsService(get_supabase_service_role_client(), user_uuid)

    logfire.info(f"Manage credits action '{request.action}'", extra={"user_uuid": user_uuid})

    if request.action == "get":
        current, max_credits = service.get()
        return CreditsResponse(current=current, max=max_credits)

    if request.action == "deduct":
        try:
            current, max_credits = service.deduct(request.amount or 1)
        except InsufficientCreditsError as e:
            return JSONResponse(
                status_code=400,
                content={"error": "Insufficient credits", "current": e.current, "max": e.max_credits}
            )
        return CreditsResponse(success=True, current=current, max=max_credits)

    if request.action == "reset":
        current, max_credits = service.reset()
        return CreditsResponse(success=True, current=current, max=max_credits)

    return JSONResponse(status_code=400, content={"error": "Invalid action"})

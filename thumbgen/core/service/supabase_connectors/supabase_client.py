import logfire
from dotenv import load_dotenv
import os
from typing import Optional

from supabase import create_client, Client
from supabase.lib.client_options import SyncClientOptions
from supabase_auth import SignInWithEmailAndPasswordCredentials, AuthResponse

from thumbgen.core.config.general_config import settings

load_dotenv()

PROFILES_TABLE_NAME = settings.PROFILES_TABLE_NAME

# Columns the subscription/credit logic reads from a profile row
PROFILE_CREDIT_COLUMNS = (
    "credits_current, credits_max, subscription_plan, is_pro_version, "
    "subscription_start_date, last_credit_reset"
)

url: Optional[str] = os.environ.get("SUPABASE_URL", None)
key: Optional[str] = os.environ.get("SUPABASE_KEY", None)


def _require_credentials() -> None:
    if url is None:
        raise Exception("SUPABASE_URL environment variable is not set")
    if key is None:
        raise Exception("SUPABASE_KEY environment variable is not set")


def get_supabase_client(jwt_token: str) -> Client:
    _require_credentials()
    return create_client(supabase_url=url, supabase_key=key, options=SyncClientOptions(
        headers={
            "Authorization": f"Bearer {jwt_token}"
        }
    ))


def get_supabase_anon_client() -> Client:
    """Client for the app itself; the user session lives on its auth object after sign-in."""
    _require_credentials()
    return create_client(supabase_url=url, supabase_key=key)


def get_supabase_service_role_client() -> Client:
    """This function returns a supabase client with the service role key. Use only if absolutely necessary."""
    _require_credentials()
    service_key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", None)
    if service_key is None:
        raise Exception("Supabase service role key is not set")
    return create_client(supabase_url=url, supabase_key=service_key)


def sign_in_with_password(client: Client, username: str, password: str) -> AuthResponse:
    """Signs the user in on the given client so later calls run as that user."""
    credentials = SignInWithEmailAndPasswordCredentials(email=username, password=password)
    auth_response = client.auth.sign_in_with_password(credentials)
    if not auth_response or not auth_response.user:
        raise ValueError(f"Authentication failed for user {username}")
    logfire.info(f"Signed in user {auth_response.user.id}")
    return auth_response

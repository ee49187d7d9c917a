"""
Application configuration settings.
"""
import json
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env.server", case_sensitive=True, extra="ignore")

    PROJECT_NAME: str = "Thumbnail Generator Server"
    VERSION: str = "1.0.0"
    DESCRIPTION: str = "backend server for the thumbnail generator app (credits and subscriptions)"

    API_V1_STR: str = "/api/v1"

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = True

    # Supabase table holding the subscription/credit profile of every user
    PROFILES_TABLE_NAME: str = "profiles"

    # Where the client keeps its small key/value state (in-flight flag, credit cache).
    # Empty means in-memory only.
    LOCAL_STORE_PATH: str = ""

    # CORS settings (accept both comma-separated string and JSON list from env)
    BACKEND_CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
        "http://localhost:8000",
        "http://localhost:8081",
    ]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors(cls, v):
        if v is None or v == "":
            return []
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                try:
                    parsed = json.loads(s)
                    if isinstance(parsed, list):
                        return [str(x).strip() for x in parsed]
                except json.JSONDecodeError:
                    # fall back to comma-splitting if JSON fails
                    pass
            return [part.strip() for part in s.split(",") if part.strip()]
        if isinstance(v, (list, tuple, set)):
            return [str(x).strip() for x in v]
        raise TypeError("BACKEND_CORS_ORIGINS must be a list or a string")


settings = Settings()

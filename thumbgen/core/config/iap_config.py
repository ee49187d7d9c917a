"""In-app purchase configuration settings."""
import os
import logfire
from typing import List, Tuple


def _split_ids(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class IAPConfig:
    """Configuration for the in-app purchase client."""

    # "ios" or "android", the store product ids differ per platform
    PLATFORM: str = os.getenv("IAP_PLATFORM", "ios").lower()

    IOS_PRODUCT_IDS: List[str] = _split_ids(
        os.getenv("IAP_IOS_PRODUCT_IDS", "thumbnail.yearly,thumbnail.monthly,thumbnail.weekly")
    )
    ANDROID_PRODUCT_IDS: List[str] = _split_ids(
        os.getenv("IAP_ANDROID_PRODUCT_IDS", "thumbnail_yearly,thumbnail_monthly,thumbnail_weekly")
    )

    # Import path of the native purchase bridge module
    NATIVE_MODULE_NAME: str = os.getenv("IAP_NATIVE_MODULE", "")

    # Key of the persisted "purchase in flight" flag
    INFLIGHT_KEY: str = "iapPurchaseInFlight"

    # A purchase attempt fails when no transaction shows up within this window
    PURCHASE_TIMEOUT_SECONDS: float = float(os.getenv("IAP_PURCHASE_TIMEOUT_SECONDS", "60"))

    # The UI stops waiting for initialize() after this long and shows "Connecting..."
    INIT_FALLBACK_TIMEOUT_SECONDS: float = float(os.getenv("IAP_INIT_FALLBACK_TIMEOUT_SECONDS", "5"))

    # Purchase history polls while a purchase waits for its listener, in case the
    # listener never fires. Backoff delays first, then a fixed interval until the attempt ends.
    FALLBACK_CHECK_INTERVALS_SECONDS: Tuple[float, ...] = (0.5, 1, 2, 3, 4, 5, 6, 8, 10, 12)
    LONG_TERM_CHECK_INTERVAL_SECONDS: float = 5.0

    SUPPORTED_PLATFORMS = {"ios", "android"}

    @classmethod
    def product_ids_for(cls, platform: str | None = None) -> List[str]:
        """Return the configured product ids for the given (or configured) platform."""
        platform = (platform or cls.PLATFORM).lower()
        if platform == "android":
            return list(cls.ANDROID_PRODUCT_IDS)
        return list(cls.IOS_PRODUCT_IDS)

    @classmethod
    def validate(cls, strict: bool = False) -> None:
        """
        Validate that required configuration is set.

        Args:
            strict: If True, raise exception on missing config. If False, only log warnings.
        """
        errors = []

        if cls.PLATFORM not in cls.SUPPORTED_PLATFORMS:
            errors.append(f"IAP_PLATFORM must be one of {sorted(cls.SUPPORTED_PLATFORMS)}, got '{cls.PLATFORM}'")

        if not cls.product_ids_for():
            errors.append(f"No product ids configured for platform '{cls.PLATFORM}'")

        if not cls.NATIVE_MODULE_NAME:
            logfire.warning(
                "IAP_NATIVE_MODULE is not set, in-app purchases will be unavailable "
                "unless a native module is injected."
            )

        if errors:
            if strict:
                raise ValueError(f"Invalid IAP configuration: {', '.join(errors)}")
            for msg in errors:
                logfire.warning(f"Warning: {msg}")

"""
Purchase error taxonomy.

Native store errors come in store-specific shapes; `classify_store_error`
turns them into one of the classes below so callers can show distinct
messaging without knowing the store.
"""
from enum import Enum
from typing import Any, Optional


class PurchaseErrorKind(str, Enum):
    CANCELLED = "cancelled"
    ALREADY_OWNED = "already_owned"
    PRODUCT_UNAVAILABLE = "product_unavailable"
    TIMEOUT = "timeout"
    NOTHING_TO_RESTORE = "nothing_to_restore"
    STORE_UNAVAILABLE = "store_unavailable"
    IN_PROGRESS = "in_progress"
    UNAUTHENTICATED = "unauthenticated"
    ENTITLEMENT_WRITE_FAILED = "entitlement_write_failed"
    FAILED = "failed"


class PurchaseError(Exception):
    """Base class of all purchase errors."""
    kind: PurchaseErrorKind = PurchaseErrorKind.FAILED
    # retryable errors leave the transaction unacknowledged at the store
    retryable: bool = False

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class PurchaseCancelledError(PurchaseError):
    kind = PurchaseErrorKind.CANCELLED


class AlreadyOwnedError(PurchaseError):
    kind = PurchaseErrorKind.ALREADY_OWNED


class ProductUnavailableError(PurchaseError):
    kind = PurchaseErrorKind.PRODUCT_UNAVAILABLE


class PurchaseTimeoutError(PurchaseError):
    kind = PurchaseErrorKind.TIMEOUT


class NothingToRestoreError(PurchaseError):
    kind = PurchaseErrorKind.NOTHING_TO_RESTORE


class StoreConnectionError(PurchaseError):
    kind = PurchaseErrorKind.STORE_UNAVAILABLE


class PurchaseInProgressError(PurchaseError):
    kind = PurchaseErrorKind.IN_PROGRESS


class UnauthenticatedError(PurchaseError):
    kind = PurchaseErrorKind.UNAUTHENTICATED
    retryable = True


class EntitlementWriteError(PurchaseError):
    kind = PurchaseErrorKind.ENTITLEMENT_WRITE_FAILED
    retryable = True


class PurchaseFailedError(PurchaseError):
    kind = PurchaseErrorKind.FAILED


# Error codes used by the native purchase bridges (react-native-iap style)
_CODE_CLASSES = {
    "E_USER_CANCELLED": PurchaseCancelledError,
    "E_USER_CANCELED": PurchaseCancelledError,
    "USER_CANCELED": PurchaseCancelledError,
    "E_ALREADY_OWNED": AlreadyOwnedError,
    "ITEM_ALREADY_OWNED": AlreadyOwnedError,
    "E_ITEM_UNAVAILABLE": ProductUnavailableError,
    "ITEM_UNAVAILABLE": ProductUnavailableError,
    "E_SKU_NOT_FOUND": ProductUnavailableError,
    "E_NOT_PREPARED": StoreConnectionError,
    "E_SERVICE_ERROR": StoreConnectionError,
    "E_NETWORK_ERROR": StoreConnectionError,
    "E_IAP_NOT_AVAILABLE": StoreConnectionError,
}

_MESSAGE_CLASSES = (
    ("cancel", PurchaseCancelledError),
    ("already owned", AlreadyOwnedError),
    ("already subscribed", AlreadyOwnedError),
    ("already purchased", AlreadyOwnedError),
    ("unavailable", ProductUnavailableError),
    ("not found", ProductUnavailableError),
)


def _error_code(error: Any) -> Optional[str]:
    if isinstance(error, dict):
        code = error.get("code") or error.get("responseCode")
    else:
        code = getattr(error, "code", None)
    return str(code) if code is not None else None


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error.get("debugMessage") or "")
    return str(getattr(error, "message", None) or error)


def classify_store_error(error: Any) -> PurchaseError:
    """
    Turn a native store error (exception or error payload) into a PurchaseError.

    The error code wins over the message; unrecognised errors become
    PurchaseFailedError.
    """
    if isinstance(error, PurchaseError):
        return error

    code = _error_code(error)
    message = _error_message(error) or "Purchase failed"

    if code and code.upper() in _CODE_CLASSES:
        return _CODE_CLASSES[code.upper()](message, code=code)

    lowered = message.lower()
    for needle, error_class in _MESSAGE_CLASSES:
        if needle in lowered:
            return error_class(message, code=code)

    return PurchaseFailedError(message, code=code)

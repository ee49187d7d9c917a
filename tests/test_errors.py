import pytest

from tests.mock_service import NativeStoreError
from thumbgen.core.service.iap.errors import (
    AlreadyOwnedError,
    PurchaseCancelledError,
    PurchaseFailedError,
    PurchaseTimeoutError,
    ProductUnavailableError,
    StoreConnectionError,
    UnauthenticatedError,
    classify_store_error,
)


class TestClassifyStoreError:
    """Test suite for classify_store_error."""

    @pytest.mark.parametrize("error,expected", [
        ({"code": "E_USER_CANCELLED", "message": "User cancelled"}, PurchaseCancelledError),
        ({"responseCode": "ITEM_ALREADY_OWNED", "debugMessage": "Item is already owned"}, AlreadyOwnedError),
        (NativeStoreError("E_ITEM_UNAVAILABLE", "Item unavailable"), ProductUnavailableError),
        (NativeStoreError("E_NETWORK_ERROR", "The Internet connection appears to be offline"), StoreConnectionError),
        (NativeStoreError("e_user_cancelled", "lowercase code"), PurchaseCancelledError),
    ])
    def test_code_is_used_first(self, error, expected):
        assert isinstance(classify_store_error(error), expected)

    def test_code_wins_over_message(self):
        error = classify_store_error({"code": "E_ALREADY_OWNED", "message": "Purchase was cancelled"})
        assert isinstance(error, AlreadyOwnedError)
        assert error.code == "E_ALREADY_OWNED"

    @pytest.mark.parametrize("message,expected", [
        ("User canceled the purchase", PurchaseCancelledError),
        ("You are already subscribed to this plan", AlreadyOwnedError),
        ("SKU not found", ProductUnavailableError),
        ("Something unexpected happened", PurchaseFailedError),
    ])
    def test_message_fallback(self, message, expected):
        error = classify_store_error(RuntimeError(message))
        assert isinstance(error, expected)
        assert error.message == message

    def test_purchase_errors_pass_through(self):
        original = PurchaseTimeoutError("too slow")
        assert classify_store_error(original) is original

    def test_empty_error_gets_a_message(self):
        assert classify_store_error({}).message == "Purchase failed"

    def test_retryable_flags(self):
        assert UnauthenticatedError("no user").retryable is True
        assert PurchaseCancelledError("cancelled").retryable is False
        assert PurchaseCancelledError("cancelled").kind.value == "cancelled"

import pytest

from tests.mock_service import MockNativePurchaseModule
from thumbgen.core.service.iap.purchase_store import PurchaseStoreAdapter

SKUS = ["thumbnail_yearly", "thumbnail_monthly"]


class ItemsByTypeBridge:
    """Older bridge: no get_subscriptions, subscriptions only listed as in-app items."""

    def __init__(self):
        self.calls = []

    def init_connection(self):
        return True

    def get_items_by_type(self, kind, skus):
        self.calls.append(kind)
        if kind == "subs":
            return []
        return [{"productId": sku, "price": "1.99"} for sku in skus]


class BrokenSubscriptionsBridge:
    def init_connection(self):
        return True

    def get_subscriptions(self, skus):
        raise RuntimeError("getSubscriptions is not a function")

    async def get_products(self, skus):
        return {"responseCode": 0, "results": [{"sku": sku} for sku in skus]}


class NoListingBridge:
    def init_connection(self):
        raise RuntimeError("billing unavailable")


class TestProductStrategies:
    """Test suite for the product listing fallbacks."""

    @pytest.mark.asyncio
    async def test_subscriptions_first(self):
        adapter = PurchaseStoreAdapter(MockNativePurchaseModule())
        products = await adapter.get_products(["thumbnail.monthly"])
        assert [p.product_id for p in products] == ["thumbnail.monthly"]
        assert products[0].title == "Monthly"

    @pytest.mark.asyncio
    async def test_items_by_type_falls_back_to_inapp(self):
        """Test that an empty subs listing is retried as inapp."""
        bridge = ItemsByTypeBridge()
        products = await PurchaseStoreAdapter(bridge).get_products(SKUS)

        assert bridge.calls == ["subs", "inapp"]
        assert [p.product_id for p in products] == SKUS
        assert products[0].price == "1.99"

    @pytest.mark.asyncio
    async def test_failing_strategy_is_skipped(self):
        """Test that a raising strategy falls through to get_products and its wrapped results."""
        products = await PurchaseStoreAdapter(BrokenSubscriptionsBridge()).get_products(SKUS)
        assert [p.product_id for p in products] == SKUS

    @pytest.mark.asyncio
    async def test_no_strategy_returns_empty(self):
        assert await PurchaseStoreAdapter(NoListingBridge()).get_products(SKUS) == []
        assert await PurchaseStoreAdapter(None).get_products(SKUS) == []


class TestConnection:
    """Test suite for connecting to the native bridge."""

    def test_missing_module_is_unavailable(self):
        adapter = PurchaseStoreAdapter.from_module_name("thumbgen_no_such_native_module")
        assert adapter.is_available() is False
        assert PurchaseStoreAdapter.from_module_name("").is_available() is False

    @pytest.mark.asyncio
    async def test_connection_failure_returns_false(self):
        adapter = PurchaseStoreAdapter(NoListingBridge())
        assert adapter.is_available() is True
        assert await adapter.initialize_connection() is False
        assert adapter.is_connected is False

    @pytest.mark.asyncio
    async def test_initialize_connection_is_idempotent(self):
        native = MockNativePurchaseModule()
        adapter = PurchaseStoreAdapter(native)

        assert await adapter.initialize_connection() is True
        assert await adapter.initialize_connection() is True
        assert native.init_calls == 1

        await adapter.end_connection()
        assert adapter.is_connected is False
        assert native.ended is True


class TestTransactions:
    """Test suite for transaction parsing, finishing and listeners."""

    def test_parse_single_and_batch(self):
        single = PurchaseStoreAdapter.parse_transactions({"transactionId": "1000", "productId": "thumbnail.weekly"})
        batch = PurchaseStoreAdapter.parse_transactions([
            {"transactionId": "1001", "productId": "thumbnail.weekly", "transactionDate": 1700000000000},
            {"orderId": "GPA.1234", "productId": "thumbnail_monthly"},
        ])

        assert [t.transaction_id for t in single] == ["1000"]
        assert [t.transaction_id for t in batch] == ["1001", "GPA.1234"]
        assert batch[0].purchase_time == 1700000000000
        assert PurchaseStoreAdapter.parse_transactions(None) == []

    @pytest.mark.asyncio
    async def test_finish_hands_back_native_payload(self):
        native = MockNativePurchaseModule()
        native.available_purchases = [{"transactionId": "1000", "productId": "thumbnail.weekly"}]
        adapter = PurchaseStoreAdapter(native)

        pending = await adapter.list_pending_purchases()
        await adapter.finish_transaction(pending[0])

        assert native.finished == [{"transactionId": "1000", "productId": "thumbnail.weekly"}]

    @pytest.mark.asyncio
    async def test_purchase_history(self):
        native = MockNativePurchaseModule()
        native.purchase_history = [{"transactionId": "900", "productId": "thumbnail.weekly", "transactionDate": 1700000000000}]
        native.available_purchases = [{"transactionId": "1000", "productId": "thumbnail.weekly"}]

        history = await PurchaseStoreAdapter(native).get_purchase_history()

        assert [t.transaction_id for t in history] == ["900"]
        assert history[0].purchase_time == 1700000000000

    @pytest.mark.asyncio
    async def test_purchase_history_falls_back_to_available_purchases(self):
        """Test that a bridge without a history call lists its unfinished purchases instead."""
        class AvailableOnlyBridge:
            def init_connection(self):
                return True

            def get_available_purchases(self):
                return [{"transactionId": "1000", "productId": "thumbnail.weekly"}]

        history = await PurchaseStoreAdapter(AvailableOnlyBridge()).get_purchase_history()

        assert [t.transaction_id for t in history] == ["1000"]
        assert await PurchaseStoreAdapter(ItemsByTypeBridge()).get_purchase_history() == []

    @pytest.mark.asyncio
    async def test_initiate_purchase_requires_bridge_support(self):
        with pytest.raises(RuntimeError):
            await PurchaseStoreAdapter(ItemsByTypeBridge()).initiate_purchase("thumbnail_yearly")

    def test_listener_handle_removes_callback(self):
        native = MockNativePurchaseModule()
        adapter = PurchaseStoreAdapter(native)
        received = []

        handle = adapter.add_purchase_listener(received.append)
        native.emit_purchase({"transactionId": "1", "productId": "thumbnail.weekly"})
        handle.remove()
        native.emit_purchase({"transactionId": "2", "productId": "thumbnail.weekly"})

        assert len(received) == 1
        assert adapter.add_error_listener(print) is not None
        assert PurchaseStoreAdapter(ItemsByTypeBridge()).add_purchase_listener(print) is None

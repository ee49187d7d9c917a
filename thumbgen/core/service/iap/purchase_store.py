"""
Adapter over the native in-app purchase bridge.

The bridge's API surface differs between versions, so every optional call is
looked up by name before use. The bridge is expected to expose some of:

    init_connection() / end_connection()
    get_subscriptions(skus), get_items_by_type(kind, skus), get_products(skus)
    request_purchase(sku)
    get_available_purchases() / get_purchase_history()
    finish_transaction(purchase, is_consumable)
    purchase_updated_listener(callback) / purchase_error_listener(callback)

Each call may return a plain value or an awaitable.
"""
import importlib
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

import logfire

from thumbgen.core.models.subscription_models import Product, PurchaseTransaction


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    # Some bridges wrap results as {"responseCode": ..., "results": [...]}
    if isinstance(value, dict) and "results" in value:
        return list(value.get("results") or [])
    return [value]


class _ListenerHandle:
    """Wraps whatever the native listener registration returned."""

    def __init__(self, native_handle: Any):
        self._native_handle = native_handle

    def remove(self) -> None:
        remove = getattr(self._native_handle, "remove", None)
        if callable(remove):
            remove()
        elif callable(self._native_handle):
            self._native_handle()


ProductStrategy = Tuple[str, Callable[[Sequence[str]], Awaitable[List[Any]]]]


class PurchaseStoreAdapter:
    """Uniform interface over the native purchase module."""

    def __init__(self, native: Any = None):
        self.native = native
        self._connected = False

    @classmethod
    def from_module_name(cls, module_name: str) -> "PurchaseStoreAdapter":
        """Load the native bridge by import path; a missing module leaves the adapter unavailable."""
        if not module_name:
            return cls(None)
        try:
            native = importlib.import_module(module_name)
            logfire.info(f"Loaded native purchase module '{module_name}'")
        except ImportError as e:
            logfire.warning(f"Native purchase module '{module_name}' could not be loaded: {str(e)}")
            native = None
        return cls(native)

    def _native_call(self, name: str) -> Optional[Callable[..., Any]]:
        if self.native is None:
            return None
        function = getattr(self.native, name, None)
        return function if callable(function) else None

    def is_available(self) -> bool:
        return self._native_call("init_connection") is not None

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def initialize_connection(self) -> bool:
        if self._connected:
            return True
        init_connection = self._native_call("init_connection")
        if init_connection is None:
            logfire.info("In-app purchases are not available on this platform")
            return False
        try:
            result = await _resolve(init_connection())
        except Exception as e:
            logfire.error(f"Failed to connect to the store: {str(e)}")
            return False
        if result is False:
            logfire.warning("Store refused the connection")
            return False
        self._connected = True
        logfire.info("Connected to the store")
        return True

    async def end_connection(self) -> None:
        end_connection = self._native_call("end_connection")
        self._connected = False
        if end_connection is None:
            return
        try:
            await _resolve(end_connection())
        except Exception as e:
            logfire.warning(f"Error while closing the store connection: {str(e)}")

    def _product_strategies(self) -> List[ProductStrategy]:
        strategies: List[ProductStrategy] = []

        get_subscriptions = self._native_call("get_subscriptions")
        if get_subscriptions is not None:
            async def subscriptions(skus: Sequence[str]) -> List[Any]:
                return _as_list(await _resolve(get_subscriptions(list(skus))))
            strategies.append(("get_subscriptions", subscriptions))

        get_items_by_type = self._native_call("get_items_by_type")
        if get_items_by_type is not None:
            async def items_by_type(skus: Sequence[str]) -> List[Any]:
                items = _as_list(await _resolve(get_items_by_type("subs", list(skus))))
                if not items:
                    items = _as_list(await _resolve(get_items_by_type("inapp", list(skus))))
                return items
            strategies.append(("get_items_by_type", items_by_type))

        get_products = self._native_call("get_products")
        if get_products is not None:
            async def products(skus: Sequence[str]) -> List[Any]:
                return _as_list(await _resolve(get_products(list(skus))))
            strategies.append(("get_products", products))

        return strategies

    async def get_products(self, product_ids: Sequence[str]) -> List[Product]:
        """Fetch product metadata, trying each listing strategy in order. Never raises."""
        for name, strategy in self._product_strategies():
            try:
                raw_products = await strategy(product_ids)
            except Exception as e:
                logfire.warning(f"Product fetch via {name} failed: {str(e)}")
                continue
            if raw_products:
                products = [Product.from_native(raw) for raw in raw_products]
                logfire.info(
                    f"Loaded {len(products)} products via {name}",
                    extra={"products": [p.product_id for p in products]}
                )
                return products
            logfire.debug(f"Product fetch via {name} returned nothing")

        logfire.warning("No products available from the store", extra={"product_ids": list(product_ids)})
        return []

    async def initiate_purchase(self, product_id: str) -> Any:
        """Open the native purchase sheet. Store errors are raised unchanged."""
        request_purchase = self._native_call("request_purchase")
        if request_purchase is None:
            raise RuntimeError("Native purchase module cannot start purchases")
        logfire.info(f"Requesting purchase of {product_id}")
        return await _resolve(request_purchase(product_id))

    async def list_pending_purchases(self) -> List[PurchaseTransaction]:
        get_available_purchases = self._native_call("get_available_purchases")
        if get_available_purchases is None:
            return []
        return self.parse_transactions(await _resolve(get_available_purchases()))

    async def get_purchase_history(self) -> List[PurchaseTransaction]:
        """Purchases the store knows for this account, finished or not. Listing errors propagate."""
        get_purchase_history = self._native_call("get_purchase_history")
        if get_purchase_history is None:
            return await self.list_pending_purchases()
        return self.parse_transactions(await _resolve(get_purchase_history()))

    async def finish_transaction(self, transaction: PurchaseTransaction) -> None:
        finish_transaction = self._native_call("finish_transaction")
        if finish_transaction is None:
            raise RuntimeError("Native purchase module cannot finish transactions")
        payload = transaction.raw if transaction.raw is not None else transaction.model_dump()
        await _resolve(finish_transaction(payload, False))
        logfire.debug(f"Finished transaction {transaction.transaction_id}")

    @staticmethod
    def parse_transactions(payload: Any) -> List[PurchaseTransaction]:
        """Normalise a listener payload (one purchase or a batch) into transactions."""
        return [PurchaseTransaction.from_native(raw) for raw in _as_list(payload)]

    def add_purchase_listener(self, callback: Callable[[Any], None]) -> Optional[_ListenerHandle]:
        register = self._native_call("purchase_updated_listener")
        if register is None:
            logfire.error("purchase_updated_listener is not available")
            return None
        return _ListenerHandle(register(callback))

    def add_error_listener(self, callback: Callable[[Any], None]) -> Optional[_ListenerHandle]:
        register = self._native_call("purchase_error_listener")
        if register is None:
            logfire.warning("purchase_error_listener is not available")
            return None
        return _ListenerHandle(register(callback))

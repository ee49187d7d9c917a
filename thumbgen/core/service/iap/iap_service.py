"""
In-app purchase service.

Reconciles store transactions with the user's profile. A transaction can show
up through the purchase listener right after the user bought something,
through the purchase history polled while a purchase waits (fallback), through
an explicit restore, or through the startup sweep of transactions the store
still holds unfinished (orphans). Each transaction id is processed at most
once per process; the store's list of unfinished transactions is what makes
that durable across restarts.

The persisted in-flight flag gates the listener and fallback paths: such a
transaction only grants entitlement while the user has a purchase in flight.
"""
import asyncio
import time
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, Iterator, List, Optional, Sequence, Set

import logfire

from thumbgen.core.config.iap_config import IAPConfig
from thumbgen.core.models.iap_events import (
    Connected,
    IAPEvent,
    ProductsLoaded,
    PurchaseCancelled,
    PurchaseFailed,
    PurchaseGranted,
    PurchaseStarted,
    RestoreCompleted,
)
from thumbgen.core.models.subscription_models import (
    Product,
    PurchaseAttempt,
    PurchaseTransaction,
    SubscriptionPlan,
    TransactionSource,
)
from thumbgen.core.service.credits.credit_reset_logic import plan_for_product_id
from thumbgen.core.service.credits.entitlement_writer import EntitlementWriter
from thumbgen.core.service.iap.errors import (
    NothingToRestoreError,
    ProductUnavailableError,
    PurchaseCancelledError,
    PurchaseError,
    PurchaseInProgressError,
    PurchaseTimeoutError,
    StoreConnectionError,
    UnauthenticatedError,
    classify_store_error,
)
from thumbgen.core.service.iap.purchase_store import PurchaseStoreAdapter
from thumbgen.core.service.local_storage.local_store import LocalStore


# Store purchase times may run slightly behind the device clock
FALLBACK_CLOCK_SKEW_MS = 5 * 60 * 1000


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


EventCallback = Callable[[IAPEvent], None]


class IAPService:
    """
    Purchase service. Build one per process and pass it to whoever needs it.

    Only one purchase attempt can be outstanding; its future is the single
    slot through which the listeners report back to `purchase_product`.
    """

    def __init__(
        self,
        store: PurchaseStoreAdapter,
        writer: EntitlementWriter,
        local_store: LocalStore,
        product_ids: Optional[Sequence[str]] = None,
        purchase_timeout: float = IAPConfig.PURCHASE_TIMEOUT_SECONDS,
        init_fallback_timeout: float = IAPConfig.INIT_FALLBACK_TIMEOUT_SECONDS,
        inflight_key: str = IAPConfig.INFLIGHT_KEY,
        fallback_intervals: Sequence[float] = IAPConfig.FALLBACK_CHECK_INTERVALS_SECONDS,
        long_term_interval: float = IAPConfig.LONG_TERM_CHECK_INTERVAL_SECONDS,
    ):
        self.store = store
        self.writer = writer
        self.local_store = local_store
        self.product_ids = list(product_ids) if product_ids is not None else IAPConfig.product_ids_for()
        self.purchase_timeout = purchase_timeout
        self.init_fallback_timeout = init_fallback_timeout
        self.inflight_key = inflight_key
        self.fallback_intervals = tuple(fallback_intervals)
        self.long_term_interval = long_term_interval

        self._state = ConnectionState.DISCONNECTED
        self._has_listener = False
        self._listener_handles: List[Any] = []
        self._processed_ids: Set[str] = set()
        self._event_callback: Optional[EventCallback] = None
        self._last_purchase_result: Any = None
        self._attempt: Optional[PurchaseAttempt] = None
        self._pending: Optional[asyncio.Future] = None
        self._orphan_check_done = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._init_task: Optional[asyncio.Future] = None
        self._resume_timer: Optional[asyncio.Task] = None
        self._fallback_task: Optional[asyncio.Task] = None
        self._background_tasks: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------ state

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    def is_available(self) -> bool:
        return self.store.is_available()

    def set_event_callback(self, callback: Optional[EventCallback]) -> None:
        """Register the UI's event sink. Replaces any previous callback."""
        self._event_callback = callback

    def get_last_purchase_result(self) -> Any:
        return self._last_purchase_result

    def get_connection_status(self) -> Dict[str, Any]:
        return {
            "is_connected": self._state is ConnectionState.CONNECTED,
            "has_listener": self._has_listener,
            "state": self._state.value,
            "purchase_in_progress": self._attempt is not None,
        }

    def _emit(self, event: IAPEvent) -> None:
        logfire.debug(f"IAP event: {event.kind}", extra={"event": event.model_dump()})
        if self._event_callback is None:
            return
        try:
            self._event_callback(event)
        except Exception as e:
            logfire.error(f"IAP event callback failed: {str(e)}", exc_info=True)

    async def _is_in_flight(self) -> bool:
        return (await self.local_store.get_item(self.inflight_key)) == "true"

    async def _set_in_flight(self, value: bool) -> None:
        await self.local_store.set_item(self.inflight_key, "true" if value else "false")

    # ----------------------------------------------------------- connection

    async def initialize(self) -> bool:
        """
        Connect to the store, register the listeners and sweep for orphans.

        Safe to call repeatedly; concurrent callers share one initialisation.
        Never raises.

        Returns:
            True if the service is connected and usable
        """
        if self._state is ConnectionState.CONNECTED:
            return True
        if self._init_task is None or self._init_task.done():
            self._init_task = asyncio.ensure_future(self._initialize())
        return await asyncio.shield(self._init_task)

    async def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for `initialize()` at most `timeout` seconds (the UI fallback).

        On timeout initialisation keeps running in the background and False is
        returned so the caller can show "Connecting..." instead of blocking.
        """
        timeout = self.init_fallback_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(self.initialize(), timeout)
        except asyncio.TimeoutError:
            logfire.warning(f"Store not ready after {timeout:g}s, unblocking the caller")
            return False

    async def _initialize(self) -> bool:
        if not self.store.is_available():
            logfire.info("IAP not available on this platform")
            return False

        self._loop = asyncio.get_running_loop()
        self._state = ConnectionState.CONNECTING
        try:
            logfire.info("Connecting to store...")
            if not await self.store.initialize_connection():
                self._state = ConnectionState.DISCONNECTED
                return False

            self._register_listeners()
            self._state = ConnectionState.CONNECTED
            self._emit(Connected())

            if self._attempt is None and await self._is_in_flight():
                self._resume_interrupted_attempt()

            await self.check_for_pending_purchases()
        except Exception as e:
            logfire.error(f"Failed to initialize IAP: {str(e)}", exc_info=True)
            if self._state is ConnectionState.CONNECTING:
                self._state = ConnectionState.DISCONNECTED

        return self._state is ConnectionState.CONNECTED

    def _register_listeners(self) -> None:
        if self._has_listener:
            return
        logfire.info("Setting up purchase listeners...")
        handles = [
            self.store.add_purchase_listener(self._on_native_purchase),
            self.store.add_error_listener(self._on_native_error),
        ]
        self._listener_handles = [handle for handle in handles if handle is not None]
        self._has_listener = True

    async def cleanup(self) -> None:
        """Remove the listeners and close the store connection (logout, teardown)."""
        for handle in self._listener_handles:
            try:
                handle.remove()
            except Exception as e:
                logfire.warning(f"Error removing purchase listener: {str(e)}")
        self._listener_handles = []
        self._has_listener = False

        if self._pending is not None and not self._pending.done():
            await self._fail_attempt(StoreConnectionError("Store connection closed during purchase"))
        self._cancel_resume_timer()
        self._cancel_fallback_check()

        await self.store.end_connection()
        self._state = ConnectionState.DISCONNECTED
        self._init_task = None
        logfire.info("IAP service cleaned up")

    # -------------------------------------------------------------- listeners

    def _dispatch(self, coroutine: Coroutine[Any, Any, None]) -> None:
        """Run a listener handler on the service's loop, whichever thread the bridge called from."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logfire.error("Purchase listener fired without a running IAP service, dropping event")
            coroutine.close()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._spawn(coroutine)
        else:
            loop.call_soon_threadsafe(self._spawn, coroutine)

    def _spawn(self, coroutine: Coroutine[Any, Any, None]) -> None:
        task = asyncio.ensure_future(coroutine)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _on_native_purchase(self, payload: Any) -> None:
        logfire.info("Purchase listener triggered")
        self._last_purchase_result = payload
        self._dispatch(self._handle_purchase_update(payload))

    def _on_native_error(self, error: Any) -> None:
        self._dispatch(self._handle_purchase_error(error))

    async def _handle_purchase_update(self, payload: Any) -> None:
        for transaction in self.store.parse_transactions(payload):
            # a failure only settles the attempt that was live when the transaction arrived
            attempt = self._attempt
            try:
                await self.process_transaction(transaction, TransactionSource.LISTENER)
            except PurchaseError as error:
                logfire.error(
                    f"Could not process listener transaction: {error.message}",
                    extra={"transaction_id": transaction.transaction_id, "kind": error.kind.value}
                )
                if attempt is not None and self._attempt is attempt:
                    await self._fail_attempt(error)
            except Exception as e:
                logfire.error(f"Error in listener purchase handling: {str(e)}", exc_info=True)
                if attempt is not None and self._attempt is attempt:
                    await self._fail_attempt(classify_store_error(e))

    async def _handle_purchase_error(self, raw_error: Any) -> None:
        error = classify_store_error(raw_error)
        if isinstance(error, PurchaseCancelledError):
            logfire.info("Purchase cancelled by user")
        else:
            logfire.error(
                f"Purchase failed: {error.message}",
                extra={"kind": error.kind.value, "code": error.code}
            )
        await self._fail_attempt(error)

    # ---------------------------------------------------------- reconciliation

    async def process_transaction(self, transaction: PurchaseTransaction, source: TransactionSource) -> bool:
        """
        Decide on and apply the entitlement for one store transaction.

        Listener and fallback transactions only entitle while a purchase is in
        flight; restored and orphaned ones always do. The transaction is
        finished with the store after the decision, whichever way it went. Only
        the attempt that was live when the transaction arrived can be settled
        by it.

        Returns:
            True if entitlement was granted

        Raises:
            UnauthenticatedError: No signed-in user; the transaction stays unfinished
            EntitlementWriteError: The profile write failed; the transaction stays unfinished
        """
        transaction_id = transaction.transaction_id
        if not transaction_id:
            logfire.warning(f"Skipping transaction without id from {source.value}", extra={"product_id": transaction.product_id})
            return False
        if transaction_id in self._processed_ids:
            logfire.info(f"Skipping already processed transaction: {transaction_id}")
            return False
        self._processed_ids.add(transaction_id)
        attempt = self._attempt

        plan = plan_for_product_id(transaction.product_id)
        try:
            gated = source in (TransactionSource.LISTENER, TransactionSource.FALLBACK)
            should_entitle = not gated or await self._is_in_flight()
            logfire.info(
                f"Processing transaction {transaction_id} from {source.value}",
                extra={"product_id": transaction.product_id, "plan": plan.value, "should_entitle": should_entitle}
            )

            if should_entitle:
                user_id = await self.writer.get_current_user_id()
                if not user_id:
                    raise UnauthenticatedError("No authenticated user, leaving the transaction unfinished")
                await self.writer.grant_entitlement(user_id, plan, transaction.product_id, transaction_id)
            else:
                logfire.warning(
                    f"Ignoring {source.value} transaction with no purchase in flight",
                    extra={"transaction_id": transaction_id}
                )
        except Exception:
            # nothing was finished, a later restore or orphan sweep can pick it up again
            self._processed_ids.discard(transaction_id)
            raise

        await self._finish(transaction)

        if should_entitle:
            await self._on_entitled(transaction, plan, source, attempt)
        return should_entitle

    async def _finish(self, transaction: PurchaseTransaction) -> None:
        try:
            await self.store.finish_transaction(transaction)
        except Exception as e:
            # the store redelivers unfinished transactions on the next launch
            logfire.error(
                f"Failed to finish transaction {transaction.transaction_id}: {str(e)}",
                extra={"transaction_id": transaction.transaction_id}
            )

    async def _on_entitled(
        self,
        transaction: PurchaseTransaction,
        plan: SubscriptionPlan,
        source: TransactionSource,
        attempt: Optional[PurchaseAttempt],
    ) -> None:
        # The attempt may have timed out during the write and a new one started since
        if self._attempt is attempt:
            live_purchase = self._pending is not None and not self._pending.done()
            if source in (TransactionSource.LISTENER, TransactionSource.FALLBACK) or not live_purchase:
                await self._complete_attempt(transaction)
        else:
            logfire.info(
                f"Attempt settled while {transaction.transaction_id} was written, leaving the current one open",
                extra={"transaction_id": transaction.transaction_id, "source": source.value}
            )

        logfire.info(f"Purchase complete, notifying UI from {source.value}")
        self._emit(PurchaseGranted(
            product_id=transaction.product_id,
            plan=plan,
            orphaned=source is TransactionSource.ORPHAN,
        ))

    # -------------------------------------------------------------- attempts

    def _cancel_resume_timer(self) -> None:
        timer, self._resume_timer = self._resume_timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    def _resume_interrupted_attempt(self) -> None:
        logfire.warning("Found a purchase interrupted by a restart, waiting for its transaction")
        attempt = PurchaseAttempt(started_at=time.monotonic(), resumed=True)
        self._attempt = attempt
        self._resume_timer = asyncio.ensure_future(self._expire_resumed_attempt(attempt))

    async def _expire_resumed_attempt(self, attempt: PurchaseAttempt) -> None:
        await asyncio.sleep(self.purchase_timeout)
        if self._attempt is attempt:
            logfire.info("Interrupted purchase was never confirmed, clearing in-flight flag")
            self._resume_timer = None
            self._attempt = None
            await self._set_in_flight(False)

    async def _complete_attempt(self, transaction: PurchaseTransaction) -> None:
        pending, self._pending = self._pending, None
        self._attempt = None
        self._cancel_resume_timer()
        self._cancel_fallback_check()
        await self._set_in_flight(False)
        if pending is not None and not pending.done():
            pending.set_result(transaction)

    async def _fail_attempt(self, error: PurchaseError) -> None:
        pending, self._pending = self._pending, None
        self._attempt = None
        self._cancel_resume_timer()
        self._cancel_fallback_check()
        await self._set_in_flight(False)
        if pending is not None and not pending.done():
            pending.set_exception(error)

        if isinstance(error, PurchaseCancelledError):
            self._emit(PurchaseCancelled())
        else:
            self._emit(PurchaseFailed(reason=error.kind.value, message=error.message))

    async def _abandon(self, future: asyncio.Future, error: PurchaseError) -> None:
        # the listeners may already have settled this attempt
        if self._pending is future:
            await self._fail_attempt(error)

    async def _run_purchase(self, attempt: PurchaseAttempt, future: asyncio.Future) -> PurchaseTransaction:
        await self.store.initiate_purchase(attempt.product_id)
        logfire.info("Purchase initiated, waiting for the transaction...")
        if self._attempt is attempt and not future.done():
            self._fallback_task = asyncio.ensure_future(self._poll_purchase_history(attempt))
        return await future

    # ------------------------------------------------------- fallback checks

    def _cancel_fallback_check(self) -> None:
        task, self._fallback_task = self._fallback_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _fallback_delays(self) -> Iterator[float]:
        yield from self.fallback_intervals
        while True:
            yield self.long_term_interval

    async def _poll_purchase_history(self, attempt: PurchaseAttempt) -> None:
        """Look for the attempt's transaction in the purchase history until the attempt ends."""
        for check, delay in enumerate(self._fallback_delays(), start=1):
            await asyncio.sleep(delay)
            if self._attempt is not attempt:
                return
            try:
                if await self._check_purchase_history(attempt):
                    logfire.info(f"Fallback check found the purchase after {check} checks")
                    return
            except Exception as e:
                logfire.warning(f"Fallback check {check} failed: {str(e)}", extra={"product_id": attempt.product_id})

    def _matches_attempt(self, transaction: PurchaseTransaction, attempt: PurchaseAttempt) -> bool:
        if not transaction.transaction_id or transaction.transaction_id in self._processed_ids:
            return False
        if transaction.product_id != attempt.product_id:
            return False
        # older purchases of the same product are not this attempt's transaction
        if attempt.started_at_ms is not None and transaction.purchase_time is not None:
            return transaction.purchase_time >= attempt.started_at_ms - FALLBACK_CLOCK_SKEW_MS
        return True

    async def _check_purchase_history(self, attempt: PurchaseAttempt) -> int:
        history = await self.store.get_purchase_history()
        matching = [t for t in history if self._matches_attempt(t, attempt)]
        if not matching:
            logfire.debug(f"No unprocessed {attempt.product_id} purchase in history yet")
            return 0
        return len(await self._process_batch(matching, TransactionSource.FALLBACK))

    # ------------------------------------------------------------- operations

    async def get_products(self, surface_errors: bool = False) -> List[Product]:
        """
        Load the configured products.

        Args:
            surface_errors: Raise instead of returning [] (the user tapped buy and
                needs an explanation)
        """
        if self._state is not ConnectionState.CONNECTED and not await self.initialize():
            if surface_errors:
                raise StoreConnectionError("Could not connect to the store")
            return []

        products = await self.store.get_products(self.product_ids)
        if not products and surface_errors:
            raise ProductUnavailableError("Subscriptions are unavailable right now, try a different plan or later")

        self._emit(ProductsLoaded(count=len(products)))
        return products

    async def purchase_product(self, product_id: str) -> PurchaseTransaction:
        """
        Buy `product_id` and wait until its transaction has been entitled.

        Raises:
            PurchaseCancelledError, AlreadyOwnedError, ProductUnavailableError,
            PurchaseTimeoutError, PurchaseInProgressError, StoreConnectionError,
            PurchaseFailedError, or a retryable error if entitlement could not
            be written
        """
        if self._state is not ConnectionState.CONNECTED and not await self.initialize():
            raise StoreConnectionError("Could not connect to the store")
        if self._pending is not None and not self._pending.done():
            raise PurchaseInProgressError("Another purchase is already in progress")

        future = asyncio.get_running_loop().create_future()
        self._pending = future
        self._cancel_resume_timer()
        attempt = PurchaseAttempt(
            product_id=product_id,
            started_at=time.monotonic(),
            started_at_ms=int(time.time() * 1000),
        )
        self._attempt = attempt

        # persisted before the store is called so a killed app still knows on relaunch
        await self._set_in_flight(True)
        logfire.info(f"In-flight flag set, attempting purchase: {product_id}")
        self._emit(PurchaseStarted(product_id=product_id))

        try:
            return await asyncio.wait_for(self._run_purchase(attempt, future), self.purchase_timeout)
        except asyncio.TimeoutError as e:
            error = PurchaseTimeoutError(f"No transaction for {product_id} within {self.purchase_timeout:g}s")
            logfire.warning(error.message)
            await self._abandon(future, error)
            raise error from e
        except PurchaseError as error:
            await self._abandon(future, error)
            raise
        except Exception as e:
            error = classify_store_error(e)
            logfire.error(f"Purchase request failed: {str(e)}", extra={"kind": error.kind.value})
            await self._abandon(future, error)
            raise error from e

    async def check_purchase_now(self) -> int:
        """
        Look for the pending purchase's transaction in the purchase history right away.

        For the "check again" button when the listener is slow. Does nothing
        without a purchase in progress.

        Returns:
            Number of transactions entitled

        Raises:
            StoreConnectionError: The purchase history could not be read
        """
        attempt = self._attempt
        if attempt is None or attempt.product_id is None:
            logfire.info("Manual purchase check without a purchase in progress")
            return 0

        try:
            return await self._check_purchase_history(attempt)
        except Exception as e:
            logfire.error(f"Manual purchase check failed: {str(e)}")
            raise StoreConnectionError(f"Could not read the purchase history: {str(e)}") from e

    async def restore_purchases(self) -> List[PurchaseTransaction]:
        """
        Re-grant every purchase the store still holds for this account.

        Returns:
            The transactions that were entitled; empty if every one of them
            was left unfinished (for example without a signed-in user)

        Raises:
            NothingToRestoreError: The store has no purchases to restore
            StoreConnectionError: The store could not be reached
        """
        if self._state is not ConnectionState.CONNECTED and not await self.initialize():
            raise StoreConnectionError("Could not connect to the store")

        try:
            purchases = await self.store.list_pending_purchases()
        except Exception as e:
            raise classify_store_error(e) from e

        if not purchases:
            raise NothingToRestoreError("No previous purchases found")

        granted = await self._process_batch(purchases, TransactionSource.RESTORE)
        logfire.info(f"Restored {len(granted)} of {len(purchases)} purchases")
        self._emit(RestoreCompleted(count=len(granted)))
        return granted

    async def check_for_pending_purchases(self) -> int:
        """
        Process unfinished store transactions as orphans, once per launch.

        Returns:
            Number of orphans that were entitled
        """
        if self._orphan_check_done:
            logfire.debug("Orphan sweep already ran for this launch")
            return 0
        self._orphan_check_done = True

        try:
            purchases = await self.store.list_pending_purchases()
        except Exception as e:
            logfire.error(f"Error checking for orphaned transactions: {str(e)}")
            self._orphan_check_done = False
            return 0

        orphans = [p for p in purchases if p.transaction_id not in self._processed_ids]
        if not orphans:
            return 0

        logfire.info(f"Found {len(orphans)} unfinished transactions, processing as orphans")
        return len(await self._process_batch(orphans, TransactionSource.ORPHAN))

    async def check_for_orphaned_transactions(self, force: bool = False) -> int:
        """Public orphan sweep; `force` runs it again even if it already ran this launch."""
        if self._state is not ConnectionState.CONNECTED and not await self.initialize():
            return 0
        if force:
            self._orphan_check_done = False
        return await self.check_for_pending_purchases()

    async def _process_batch(
        self,
        transactions: Sequence[PurchaseTransaction],
        source: TransactionSource,
    ) -> List[PurchaseTransaction]:
        granted = []
        for transaction in transactions:
            try:
                if await self.process_transaction(transaction, source):
                    granted.append(transaction)
            except PurchaseError as error:
                logfire.warning(
                    f"Transaction left unfinished: {error.message}",
                    extra={"transaction_id": transaction.transaction_id, "source": source.value}
                )
        return granted

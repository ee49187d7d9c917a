"""Wiring of the client-side services."""
from typing import Any, Optional

import logfire
from supabase import Client

from thumbgen.core.config.general_config import settings
from thumbgen.core.config.iap_config import IAPConfig
from thumbgen.core.service.credits.credits_refresher import CreditsRefresher
from thumbgen.core.service.credits.entitlement_writer import EntitlementWriter
from thumbgen.core.service.iap.iap_service import IAPService
from thumbgen.core.service.iap.purchase_store import PurchaseStoreAdapter
from thumbgen.core.service.local_storage.local_store import LocalStore
from thumbgen.core.service.local_storage.subscription_storage import SubscriptionStorage
from thumbgen.core.service.supabase_connectors.supabase_client import get_supabase_anon_client


class ClientContext:
    """
    Everything the app needs to sell subscriptions and show credits.

    Built once at start-up and handed to the screens; there is no global
    instance.
    """

    def __init__(
        self,
        iap: IAPService,
        writer: EntitlementWriter,
        storage: SubscriptionStorage,
        credits: CreditsRefresher,
    ):
        self.iap = iap
        self.writer = writer
        self.storage = storage
        self.credits = credits

    @classmethod
    def create(
        cls,
        supabase_client: Optional[Client] = None,
        native_module: Any = None,
        local_store_path: Optional[str] = None,
    ) -> "ClientContext":
        """
        Build the services from configuration.

        Args:
            supabase_client: Client carrying the user's session; a new anon client by default
            native_module: Native purchase bridge; loaded from IAP_NATIVE_MODULE by default
            local_store_path: File for the persisted client state; LOCAL_STORE_PATH by default
        """
        IAPConfig.validate(strict=False)

        local_store = LocalStore(local_store_path if local_store_path is not None else settings.LOCAL_STORE_PATH)
        storage = SubscriptionStorage(local_store)
        writer = EntitlementWriter(supabase_client or get_supabase_anon_client(), storage)

        if native_module is not None:
            store = PurchaseStoreAdapter(native_module)
        else:
            store = PurchaseStoreAdapter.from_module_name(IAPConfig.NATIVE_MODULE_NAME)

        iap = IAPService(store=store, writer=writer, local_store=local_store)
        logfire.info(
            "Client services created",
            extra={"platform": IAPConfig.PLATFORM, "iap_available": store.is_available()}
        )
        return cls(iap=iap, writer=writer, storage=storage, credits=CreditsRefresher(writer))

    async def sign_out(self) -> None:
        """Tear down the store connection and forget the cached subscription."""
        await self.iap.cleanup()
        await self.storage.clear_subscription_info()

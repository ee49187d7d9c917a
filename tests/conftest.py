import logfire
import pytest

from tests.mock_service import MockNativePurchaseModule, MockSupabaseClient
from thumbgen.core.service.credits.entitlement_writer import EntitlementWriter
from thumbgen.core.service.iap.iap_service import IAPService
from thumbgen.core.service.iap.purchase_store import PurchaseStoreAdapter
from thumbgen.core.service.local_storage.local_store import LocalStore
from thumbgen.core.service.local_storage.subscription_storage import SubscriptionStorage

logfire.configure(send_to_logfire=False, console=False)

USER_ID = "3f1c2a9e-0000-4000-8000-000000000001"
PRODUCT_IDS = ["thumbnail.yearly", "thumbnail.monthly", "thumbnail.weekly"]


@pytest.fixture
def native():
    return MockNativePurchaseModule()


@pytest.fixture
def supabase():
    client = MockSupabaseClient(user_id=USER_ID)
    client.add_profile(USER_ID, credits_current=0, credits_max=0, is_pro_version=False)
    return client


@pytest.fixture
def local_store(tmp_path):
    return LocalStore(tmp_path / "client_state.json")


@pytest.fixture
def storage(local_store):
    return SubscriptionStorage(local_store)


@pytest.fixture
def writer(supabase, storage):
    return EntitlementWriter(supabase, storage)


@pytest.fixture
def events():
    return []


@pytest.fixture
def service(native, writer, local_store, events):
    iap = IAPService(
        store=PurchaseStoreAdapter(native),
        writer=writer,
        local_store=local_store,
        product_ids=PRODUCT_IDS,
        purchase_timeout=1.0,
        init_fallback_timeout=0.5,
    )
    iap.set_event_callback(events.append)
    return iap

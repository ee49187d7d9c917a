from datetime import datetime, timezone

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from tests.conftest import USER_ID
from thumbgen.app.api.v1.endpoints import credits_api, receipts_api
from thumbgen.core.service.purchase_verification import verification_service
from thumbgen.core.service.purchase_verification.verification_service import VerificationService
from thumbgen.main import app

AUTH_HEADERS = {"Authorization": "Bearer test-jwt"}


@pytest.fixture
def client(monkeypatch, supabase):
    monkeypatch.setattr(
        VerificationService,
        "get_authenticated_user_uuid",
        staticmethod(lambda jwt_token: (supabase, USER_ID))
    )
    monkeypatch.setattr(credits_api, "get_supabase_service_role_client", lambda: supabase)
    monkeypatch.setattr(receipts_api, "get_supabase_service_role_client", lambda: supabase)
    return TestClient(app)


def subscribe(supabase, plan, credits_current, credits_max):
    now = datetime.now(timezone.utc).isoformat()
    supabase.profile(USER_ID).update(
        subscription_plan=plan,
        is_pro_version=True,
        subscription_start_date=now,
        last_credit_reset=now,
        credits_current=credits_current,
        credits_max=credits_max,
    )


class TestManageCredits:
    """Test suite for POST /api/v1/credits/."""

    def test_get(self, client, supabase):
        subscribe(supabase, "monthly", 40, 75)

        response = client.post("/api/v1/credits/", json={"action": "get"}, headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"current": 40, "max": 75}

    def test_get_initialises_missing_columns(self, client, supabase):
        subscribe(supabase, "weekly", None, None)

        response = client.post("/api/v1/credits/", json={"action": "get"}, headers=AUTH_HEADERS)

        assert response.json() == {"current": 10, "max": 10}
        assert supabase.profile(USER_ID)["credits_current"] == 10

    def test_get_applies_due_reset(self, client, supabase):
        subscribe(supabase, "weekly", 0, 10)
        supabase.profile(USER_ID)["last_credit_reset"] = "2020-01-01T00:00:00+00:00"

        response = client.post("/api/v1/credits/", json={"action": "get"}, headers=AUTH_HEADERS)

        assert response.json() == {"current": 10, "max": 10}
        assert supabase.profile(USER_ID)["last_credit_reset"] != "2020-01-01T00:00:00+00:00"

    def test_deduct(self, client, supabase):
        subscribe(supabase, "yearly", 90, 90)

        response = client.post("/api/v1/credits/", json={"action": "deduct", "amount": 3}, headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"success": True, "current": 87, "max": 90}
        assert supabase.profile(USER_ID)["credits_current"] == 87

    def test_deduct_insufficient(self, client, supabase):
        subscribe(supabase, "weekly", 0, 10)

        response = client.post("/api/v1/credits/", json={"action": "deduct"}, headers=AUTH_HEADERS)

        assert response.status_code == 400
        assert response.json() == {"error": "Insufficient credits", "current": 0, "max": 10}

    def test_reset(self, client, supabase):
        subscribe(supabase, "monthly", 2, 75)

        response = client.post("/api/v1/credits/", json={"action": "reset"}, headers=AUTH_HEADERS)

        assert response.json() == {"success": True, "current": 75, "max": 75}

    def test_invalid_action(self, client):
        response = client.post("/api/v1/credits/", json={"action": "refund"}, headers=AUTH_HEADERS)

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid action"}

    def test_zero_amount_is_rejected(self, client):
        response = client.post("/api/v1/credits/", json={"action": "deduct", "amount": 0}, headers=AUTH_HEADERS)
        assert response.status_code == 422

    def test_missing_token(self, client):
        response = client.post("/api/v1/credits/", json={"action": "get"})
        assert response.status_code == 401

    def test_invalid_token(self, monkeypatch):
        def reject(jwt_token):
            raise Exception("invalid JWT")

        monkeypatch.setattr(verification_service, "get_supabase_client", reject)

        response = TestClient(app).post("/api/v1/credits/", json={"action": "get"}, headers=AUTH_HEADERS)

        assert response.status_code == 401


class TestValidateReceipt:
    """Test suite for POST /api/v1/receipts/validate."""

    def test_validate_grants_plan(self, client, supabase):
        response = client.post(
            "/api/v1/receipts/validate",
            json={"product_id": "thumbnail_monthly", "transaction_id": "GPA.1", "source": "restore"},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "plan": "monthly", "credits_max": 75}
        profile = supabase.profile(USER_ID)
        assert profile["subscription_id"] == "GPA.1"
        assert profile["credits_current"] == 75
        assert profile["is_pro_version"] is True

    def test_database_failure(self, client, supabase):
        supabase.fail_writes = True

        response = client.post(
            "/api/v1/receipts/validate",
            json={"product_id": "thumbnail.yearly", "transaction_id": "1000"},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 500


class TestVerificationService:

    def test_missing_profile_is_404(self, supabase):
        with pytest.raises(HTTPException) as exc_info:
            VerificationService.get_user_credit_profile(supabase, "unknown-user")
        assert exc_info.value.status_code == 404


class TestHealth:

    def test_health(self):
        response = TestClient(app).get("/api/v1/health/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_detailed_health(self):
        response = TestClient(app).get("/api/v1/health/detailed")
        assert response.json()["version"] == "1.0.0"

"""
Profile, address, bank data, preferences and the user dashboard.
"""
from datetime import datetime, timedelta
from httpx import AsyncClient
from sqlalchemy import select, func

from conftest import DEFAULT_PASSWORD
from db.models.audit_log import AuditLog

ADDRESS = {
    "street": "Avenida Paulista",
    "number": "1000",
    "neighborhood": "Bela Vista",
    "city": "São Paulo",
    "state": "sp",
    "zip_code": "01310-100",
}


def bank_payload(**overrides) -> dict:
    payload = {
        "bank_code": "001",
        "bank_name": "Banco do Brasil",
        "agency": "1234",
        "account": "98765-4",
        "account_type": "corrente",
        "holder_name": "Joao Souza",
        "holder_cpf": "529.982.247-25",
        "pix_key": "joao@example.com",
        "pix_key_type": "email",
    }
    payload.update(overrides)
    return payload


class TestProfile:

    async def test_get_profile(self, async_client: AsyncClient, user, make_user, user_headers):
        await make_user(referred_by=user)

        response = await async_client.get("/api/user/profile", headers=user_headers)

        data = response.json()["data"]["user"]
        assert data["email"] == user.email
        assert data["address"] is None
        assert data["referrals"] == {"total": 1, "active": 0}
        assert "hashed_password" not in data

    async def test_update_profile(self, async_client: AsyncClient, user_headers):
        response = await async_client.put("/api/user/profile", json={"first_name": "Carla", "phone": "(11) 98888-7777"}, headers=user_headers)

        assert response.status_code == 200
        assert response.json()["data"]["user"]["first_name"] == "Carla"
        assert response.json()["data"]["user"]["phone"] == "11988887777"

    async def test_change_password(self, async_client: AsyncClient, user, user_headers):
        wrong = await async_client.put("/api/user/password", json={"current_password": "Errada@1", "new_password": "Nova@4567"}, headers=user_headers)
        assert wrong.status_code == 400
        assert wrong.json()["error"]["message"] == "Senha atual incorreta"

        weak = await async_client.put("/api/user/password", json={"current_password": DEFAULT_PASSWORD, "new_password": "fraca"}, headers=user_headers)
        assert weak.status_code == 400

        ok = await async_client.put("/api/user/password", json={"current_password": DEFAULT_PASSWORD, "new_password": "Nova@4567"}, headers=user_headers)
        assert ok.status_code == 200

        login = await async_client.post("/api/auth/login", json={"email": user.email, "password": "Nova@4567"})
        assert login.status_code == 200


class TestAddressAndBankData:

    async def test_address_upsert(self, async_client: AsyncClient, user_headers):
        created = await async_client.put("/api/user/address", json=ADDRESS, headers=user_headers)
        updated = await async_client.put("/api/user/address", json={**ADDRESS, "number": "2000"}, headers=user_headers)
        fetched = await async_client.get("/api/user/address", headers=user_headers)

        assert created.json()["data"]["address"]["state"] == "SP"
        assert created.json()["data"]["address"]["zip_code"] == "01310100"
        assert updated.json()["data"]["address"]["id"] == created.json()["data"]["address"]["id"]
        assert fetched.json()["data"]["address"]["number"] == "2000"

    async def test_invalid_zip_code(self, async_client: AsyncClient, user_headers):
        response = await async_client.put("/api/user/address", json={**ADDRESS, "zip_code": "123"}, headers=user_headers)

        assert response.status_code == 400

    async def test_bank_data_changes_are_audited(self, async_client: AsyncClient, db_session, user, user_headers):
        created = await async_client.put("/api/user/bank-data", json=bank_payload(), headers=user_headers)
        updated = await async_client.put("/api/user/bank-data", json=bank_payload(agency="4321"), headers=user_headers)
        fetched = await async_client.get("/api/user/bank-data", headers=user_headers)

        assert created.status_code == 200
        assert created.json()["data"]["bank_data"]["holder_cpf"] == "52998224725"
        assert updated.json()["data"]["bank_data"]["agency"] == "4321"
        assert fetched.json()["data"]["bank_data"]["agency"] == "4321"

        events = (await db_session.execute(
            select(AuditLog.event_type).where(AuditLog.user_id == user.id, AuditLog.entity == "bank_data").order_by(AuditLog.id)
        )).scalars().all()
        assert events == ["BANK_DATA_ADDED", "BANK_DATA_UPDATED", "BANK_DATA_VIEWED"]

    async def test_bank_data_invalid_holder_cpf(self, async_client: AsyncClient, user_headers):
        response = await async_client.put("/api/user/bank-data", json=bank_payload(holder_cpf="123.456.789-00"), headers=user_headers)

        assert response.status_code == 400

    async def test_bank_data_missing(self, async_client: AsyncClient, user_headers):
        response = await async_client.get("/api/user/bank-data", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["data"]["bank_data"] is None


class TestPreferences:

    async def test_defaults_created_on_first_read(self, async_client: AsyncClient, user_headers):
        response = await async_client.get("/api/user/preferences", headers=user_headers)

        prefs = response.json()["data"]["preferences"]
        assert prefs["email_notifications"] is True
        assert prefs["marketing_emails"] is False

    async def test_partial_update(self, async_client: AsyncClient, user_headers):
        await async_client.put("/api/user/preferences", json={"marketing_emails": True}, headers=user_headers)
        response = await async_client.put("/api/user/preferences", json={"preferred_categories": ["vitaminas"]}, headers=user_headers)

        prefs = response.json()["data"]["preferences"]
        assert prefs["marketing_emails"] is True
        assert prefs["preferred_categories"] == ["vitaminas"]


class TestDashboard:

    async def test_dashboard(self, async_client: AsyncClient, user, make_user, plan, add_subscription, add_commission, add_coupon, add_product, user_headers):
        referred = await make_user(referred_by=user)
        await add_subscription(user, plan)
        await add_commission(user, referred, "10.00", status="PENDING")
        await add_commission(user, referred, "5.00", status="CANCELED")
        await add_coupon("BEMVINDO10", owners=[user])
        await add_coupon("USADO", owners=[user], end_date=datetime.utcnow() - timedelta(days=1))
        product = await add_product()
        await async_client.post("/api/orders", json={"items": [{"product_id": product.id, "quantity": 1}]}, headers=user_headers)

        response = await async_client.get("/api/user/dashboard", headers=user_headers)

        data = response.json()["data"]
        assert data["user"]["referral_code"] == user.referral_code
        assert data["user"]["subscription"]["plan"]["name"] == "Plano Mensal"
        assert data["stats"] == {"total_commissions": 10, "total_referrals": 1, "total_orders": 1}
        assert len(data["recent_orders"]) == 1
        assert [c["code"] for c in data["available_coupons"]] == ["BEMVINDO10"]

"""
Plans, subscriptions and payment recording.
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from httpx import AsyncClient
from sqlalchemy import select, func

from conftest import auth_headers
from db.models.subscription import BillingHistory, SubscriptionPlan
from db.models.commission import Commission


class TestPlans:

    async def test_public_listing_hides_inactive_plans(self, async_client: AsyncClient, db_session, plan, user_headers):
        db_session.add(SubscriptionPlan(name="Plano Antigo", price=Decimal("50.00"), is_active=False))
        await db_session.commit()

        response = await async_client.get("/api/subscriptions/plans", headers=user_headers)

        assert [p["name"] for p in response.json()["data"]["plans"]] == ["Plano Mensal"]

    async def test_admin_creates_plan(self, async_client: AsyncClient, admin_headers):
        response = await async_client.post(
            "/api/admin/plans",
            json={"name": "Plano Anual", "price": "999.90", "billing_cycle": "YEARLY", "commission_percentage": "0.15"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        created = response.json()["data"]["plan"]
        assert created["billing_cycle"] == "YEARLY"
        assert created["commission_percentage"] == 0.15

        listing = await async_client.get("/api/admin/plans", headers=admin_headers)
        assert len(listing.json()["data"]["plans"]) == 1

    async def test_duplicate_plan_name(self, async_client: AsyncClient, plan, admin_headers):
        response = await async_client.post("/api/admin/plans", json={"name": plan.name, "price": "10.00"}, headers=admin_headers)

        assert response.status_code == 409


class TestSubscribe:

    async def test_subscribe_starts_pending(self, async_client: AsyncClient, plan, user_headers):
        response = await async_client.post("/api/subscriptions/subscribe", json={"plan_id": plan.id}, headers=user_headers)

        assert response.status_code == 201
        subscription = response.json()["data"]["subscription"]
        assert subscription["status"] == "PENDING"
        assert subscription["plan"]["name"] == "Plano Mensal"

    async def test_subscribe_unknown_plan(self, async_client: AsyncClient, user_headers):
        response = await async_client.post("/api/subscriptions/subscribe", json={"plan_id": 404}, headers=user_headers)

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Plano não encontrado ou inativo"

    async def test_cannot_subscribe_twice_while_active(self, async_client: AsyncClient, user, plan, add_subscription, user_headers):
        await add_subscription(user, plan)

        response = await async_client.post("/api/subscriptions/subscribe", json={"plan_id": plan.id}, headers=user_headers)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Usuário já possui assinatura ativa"

    async def test_cancel_then_resubscribe_reuses_row(self, async_client: AsyncClient, user, plan, add_subscription, user_headers):
        subscription = await add_subscription(user, plan)

        canceled = await async_client.post("/api/subscriptions/cancel", json={"reason": "Mudança de cidade"}, headers=user_headers)
        assert canceled.status_code == 200
        assert canceled.json()["data"]["subscription"]["status"] == "CANCELED"
        assert canceled.json()["data"]["subscription"]["end_date"] is not None

        again = await async_client.post("/api/subscriptions/cancel", headers=user_headers)
        assert again.status_code == 400

        response = await async_client.post("/api/subscriptions/subscribe", json={"plan_id": plan.id}, headers=user_headers)
        assert response.status_code == 201
        assert response.json()["data"]["subscription"]["id"] == subscription.id
        assert response.json()["data"]["subscription"]["status"] == "PENDING"

    async def test_cancel_without_subscription(self, async_client: AsyncClient, user_headers):
        response = await async_client.post("/api/subscriptions/cancel", headers=user_headers)

        assert response.status_code == 404

    async def test_current_without_subscription(self, async_client: AsyncClient, user_headers):
        response = await async_client.get("/api/subscriptions/current", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["data"]["subscription"] is None


class TestPayments:
    """POST /api/admin/subscriptions/{id}/payments"""

    @pytest.fixture
    async def referrer(self, make_user):
        return await make_user()

    @pytest.fixture
    async def subscriber(self, make_user, referrer):
        return await make_user(referred_by=referrer)

    async def _pay(self, async_client, subscription_id, headers, reference="pix-0001", **extra):
        return await async_client.post(
            f"/api/admin/subscriptions/{subscription_id}/payments",
            json={"external_reference": reference, "payment_method": "pix", **extra},
            headers=headers,
        )

    async def test_first_payment_activates_and_awards_commission(self, async_client: AsyncClient, db_session, subscriber, referrer, plan, add_subscription, admin_headers):
        subscription = await add_subscription(subscriber, plan, status="PENDING")
        subscription.start_date = None
        await db_session.commit()

        response = await self._pay(async_client, subscription.id, admin_headers)

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["duplicate"] is False
        assert data["billing"]["amount"] == 100
        assert data["subscription"]["status"] == "ACTIVE"
        assert data["subscription"]["start_date"] is not None
        assert data["commission"]["earner_id"] == referrer.id
        assert data["commission"]["amount"] == 10
        assert data["commission"]["status"] == "PENDING"

        next_billing = datetime.fromisoformat(data["subscription"]["next_billing_date"])
        assert timedelta(days=29) < next_billing - datetime.utcnow() <= timedelta(days=30)

    async def test_repeated_reference_is_idempotent(self, async_client: AsyncClient, db_session, subscriber, plan, add_subscription, admin_headers):
        subscription = await add_subscription(subscriber, plan, status="PENDING")

        first = await self._pay(async_client, subscription.id, admin_headers)
        second = await self._pay(async_client, subscription.id, admin_headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["message"] == "Pagamento já registrado"
        assert second.json()["data"]["duplicate"] is True
        assert second.json()["data"]["billing"]["id"] == first.json()["data"]["billing"]["id"]
        assert (await db_session.execute(select(func.count(BillingHistory.id)))).scalar_one() == 1
        assert (await db_session.execute(select(func.count(Commission.id)))).scalar_one() == 1

    async def test_renewal_extends_from_previous_due_date(self, async_client: AsyncClient, subscriber, plan, add_subscription, admin_headers):
        subscription = await add_subscription(subscriber, plan, status="PENDING")

        first = await self._pay(async_client, subscription.id, admin_headers, reference="pix-0001")
        second = await self._pay(async_client, subscription.id, admin_headers, reference="pix-0002")

        first_due = datetime.fromisoformat(first.json()["data"]["subscription"]["next_billing_date"])
        second_due = datetime.fromisoformat(second.json()["data"]["subscription"]["next_billing_date"])
        assert second_due - first_due == timedelta(days=30)

    async def test_plan_commission_override_and_custom_amount(self, async_client: AsyncClient, db_session, subscriber, plan, add_subscription, admin_headers):
        plan.commission_percentage = Decimal("0.2500")
        await db_session.commit()
        subscription = await add_subscription(subscriber, plan, status="PENDING")

        response = await self._pay(async_client, subscription.id, admin_headers, amount="80.00")

        assert response.json()["data"]["commission"]["amount"] == 20

    async def test_payment_without_referrer_creates_no_commission(self, async_client: AsyncClient, user, plan, add_subscription, admin_headers):
        subscription = await add_subscription(user, plan, status="PENDING")

        response = await self._pay(async_client, subscription.id, admin_headers)

        assert response.status_code == 201
        assert response.json()["data"]["commission"] is None

    async def test_canceled_subscription_rejects_payment(self, async_client: AsyncClient, subscriber, plan, add_subscription, admin_headers):
        subscription = await add_subscription(subscriber, plan, status="CANCELED")

        response = await self._pay(async_client, subscription.id, admin_headers)

        assert response.status_code == 400

    async def test_referrer_sees_active_referral(self, async_client: AsyncClient, subscriber, referrer, plan, add_subscription, admin_headers):
        subscription = await add_subscription(subscriber, plan, status="PENDING")
        await self._pay(async_client, subscription.id, admin_headers)

        response = await async_client.get("/api/commissions/summary", headers=auth_headers(referrer))

        summary = response.json()["data"]["summary"]
        assert summary["active_referrals"] == 1
        assert summary["pending_balance"] == 10

    async def test_current_subscription_includes_billing_history(self, async_client: AsyncClient, subscriber, plan, add_subscription, admin_headers):
        subscription = await add_subscription(subscriber, plan, status="PENDING")
        await self._pay(async_client, subscription.id, admin_headers)

        response = await async_client.get("/api/subscriptions/current", headers=auth_headers(subscriber))

        current = response.json()["data"]["subscription"]
        assert current["status"] == "ACTIVE"
        assert len(current["billing_history"]) == 1
        assert current["billing_history"][0]["external_reference"] == "pix-0001"

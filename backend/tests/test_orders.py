"""
Catalog, coupons and order placement.
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from fastapi import HTTPException
from httpx import AsyncClient
from sqlalchemy import select

from conftest import auth_headers
from db.models.coupon import Coupon, UserCoupon
from db.models.order import Product
from services.coupon_service import compute_discount, check_coupon_usable


class TestProducts:

    async def test_list_and_search_active_products(self, async_client: AsyncClient, add_product):
        await add_product("Whey Protein", description="Proteína concentrada")
        await add_product("Creatina", price="89.90")
        await add_product("Produto Fora de Linha", is_active=False)

        listing = await async_client.get("/api/products")
        search = await async_client.get("/api/products", params={"search": "whey"})

        assert [p["name"] for p in listing.json()["data"]["products"]] == ["Creatina", "Whey Protein"]
        assert listing.json()["data"]["pagination"]["total"] == 2
        assert [p["name"] for p in search.json()["data"]["products"]] == ["Whey Protein"]

    async def test_get_by_id_or_slug(self, async_client: AsyncClient, add_product):
        product = await add_product("Omega 3", slug="omega-3")

        by_id = await async_client.get(f"/api/products/{product.id}")
        by_slug = await async_client.get("/api/products/omega-3")
        missing = await async_client.get("/api/products/nao-existe")

        assert by_id.json()["data"]["product"]["slug"] == "omega-3"
        assert by_slug.json()["data"]["product"]["id"] == product.id
        assert missing.status_code == 404

    async def test_admin_create_product_generates_slug_and_refreshes_cache(self, async_client: AsyncClient, admin_headers):
        before = await async_client.get("/api/products")
        assert before.json()["data"]["products"] == []

        response = await async_client.post(
            "/api/admin/products",
            json={"name": "Vitamina D3 2000UI", "price": "39.90", "stock": 5},
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.json()["data"]["product"]["slug"] == "vitamina-d3-2000ui"
        after = await async_client.get("/api/products")
        assert len(after.json()["data"]["products"]) == 1


class TestCouponRules:

    def _coupon(self, **fields):
        values = {"code": "X", "name": "X", "type": "PERCENTAGE", "value": Decimal("10"), "usage_limit_per_user": 1, "is_active": True}
        values.update(fields)
        return Coupon(**values)

    @pytest.mark.parametrize("fields, cart, expected", [
        ({"type": "PERCENTAGE", "value": Decimal("10")}, "200.00", "20.00"),
        ({"type": "PERCENTAGE", "value": Decimal("50"), "maximum_discount": Decimal("30")}, "200.00", "30.00"),
        ({"type": "FIXED", "value": Decimal("25")}, "200.00", "25.00"),
        ({"type": "FIXED", "value": Decimal("25")}, "15.00", "15.00"),
        ({"type": "PERCENTAGE", "value": Decimal("15")}, "33.33", "5.00"),
    ])
    def test_compute_discount(self, fields, cart, expected):
        assert compute_discount(self._coupon(**fields), Decimal(cart)) == Decimal(expected)

    def test_usable_coupon_passes(self):
        coupon = self._coupon()
        check_coupon_usable(coupon, UserCoupon(usage_count=0), Decimal("10"))

    @pytest.mark.parametrize("fields, usage_count, message", [
        ({"is_active": False}, 0, "Cupom inativo"),
        ({"start_date": datetime.utcnow() + timedelta(days=1)}, 0, "Cupom ainda não está válido"),
        ({"end_date": datetime.utcnow() - timedelta(days=1)}, 0, "Cupom expirado"),
        ({}, 1, "Limite de uso do cupom atingido"),
        ({"minimum_amount": Decimal("150")}, 0, "Valor mínimo para este cupom é R$ 150.00"),
    ])
    def test_unusable_coupon(self, fields, usage_count, message):
        with pytest.raises(HTTPException) as exc_info:
            check_coupon_usable(self._coupon(**fields), UserCoupon(usage_count=usage_count), Decimal("100"))
        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == message

    def test_unassigned_coupon_is_not_found(self):
        with pytest.raises(HTTPException) as exc_info:
            check_coupon_usable(self._coupon(), None, Decimal("100"))
        assert exc_info.value.status_code == 404


class TestCouponEndpoints:

    async def test_list_only_assigned_and_valid(self, async_client: AsyncClient, user, add_coupon, user_headers):
        await add_coupon("BEMVINDO10", owners=[user])
        await add_coupon("EXPIRADO", owners=[user], end_date=datetime.utcnow() - timedelta(days=1))
        await add_coupon("DEOUTRO")

        response = await async_client.get("/api/coupons", headers=user_headers)

        coupons = response.json()["data"]["coupons"]
        assert [c["code"] for c in coupons] == ["BEMVINDO10"]
        assert coupons[0]["remaining_uses"] == 1

    async def test_validate_returns_discount(self, async_client: AsyncClient, user, add_coupon, user_headers):
        await add_coupon("BEMVINDO10", owners=[user])

        response = await async_client.post("/api/coupons/validate", json={"code": "bemvindo10", "cart_total": "250.00"}, headers=user_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["discount"] == 25
        assert data["final_total"] == 225

    async def test_validate_coupon_of_another_user(self, async_client: AsyncClient, make_user, add_coupon, user_headers):
        other = await make_user()
        await add_coupon("SOPRAELE", owners=[other])

        response = await async_client.post("/api/coupons/validate", json={"code": "SOPRAELE", "cart_total": "100"}, headers=user_headers)

        assert response.status_code == 404

    async def test_admin_creates_and_assigns(self, async_client: AsyncClient, user, admin_headers):
        created = await async_client.post(
            "/api/admin/coupons",
            json={"code": "frete20", "name": "Frete", "type": "FIXED", "value": "20.00"},
            headers=admin_headers,
        )
        assert created.status_code == 201
        coupon = created.json()["data"]["coupon"]
        assert coupon["code"] == "FRETE20"

        assigned = await async_client.post(f"/api/admin/coupons/{coupon['id']}/assign", json={"user_ids": [user.id, 9999]}, headers=admin_headers)
        again = await async_client.post(f"/api/admin/coupons/{coupon['id']}/assign", json={"user_ids": [user.id]}, headers=admin_headers)

        assert assigned.json()["data"] == {"assigned": [user.id], "already_assigned": [], "not_found": [9999]}
        assert again.json()["data"]["already_assigned"] == [user.id]

    @pytest.mark.parametrize("payload, message", [
        ({"type": "PERCENTAGE", "value": "150"}, "Percentual de desconto não pode exceder 100"),
        ({"type": "FIXED", "value": "10", "start_date": "2030-01-10T00:00:00", "end_date": "2030-01-01T00:00:00"},
         "Data final deve ser posterior à data inicial"),
    ])
    async def test_admin_coupon_validation(self, async_client: AsyncClient, admin_headers, payload, message):
        response = await async_client.post("/api/admin/coupons", json={"code": "RUIM", "name": "Ruim", **payload}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == message


class TestOrders:

    async def test_place_order_with_coupon(self, async_client: AsyncClient, db_session, user, add_product, add_coupon, user_headers):
        whey = await add_product("Whey Protein", price="100.00", stock=10)
        creatina = await add_product("Creatina", price="50.00", stock=3)
        await add_coupon("BEMVINDO10", owners=[user])

        response = await async_client.post(
            "/api/orders",
            json={
                "items": [
                    {"product_id": whey.id, "quantity": 1},
                    {"product_id": creatina.id, "quantity": 2},
                    {"product_id": whey.id, "quantity": 1},
                ],
                "coupon_code": "bemvindo10",
                "shipping_cost": "15.00",
            },
            headers=user_headers,
        )

        assert response.status_code == 201
        order = response.json()["data"]["order"]
        assert order["order_number"].startswith("BC")
        assert order["subtotal"] == 300
        assert order["discount"] == 30
        assert order["total"] == 285
        assert order["coupon_code"] == "BEMVINDO10"
        assert {i["product_name"]: i["quantity"] for i in order["items"]} == {"Whey Protein": 2, "Creatina": 2}

        stocks = dict((await db_session.execute(select(Product.name, Product.stock))).all())
        assert stocks == {"Whey Protein": 8, "Creatina": 1}
        usage = (await db_session.execute(select(UserCoupon.usage_count))).scalar_one()
        assert usage == 1

    async def test_coupon_usage_limit_applies_across_orders(self, async_client: AsyncClient, user, add_product, add_coupon, user_headers):
        product = await add_product(stock=10)
        await add_coupon("BEMVINDO10", owners=[user])
        payload = {"items": [{"product_id": product.id, "quantity": 1}], "coupon_code": "BEMVINDO10"}

        first = await async_client.post("/api/orders", json=payload, headers=user_headers)
        second = await async_client.post("/api/orders", json=payload, headers=user_headers)

        assert first.status_code == 201
        assert second.status_code == 400
        assert second.json()["error"]["message"] == "Limite de uso do cupom atingido"

    async def test_insufficient_stock(self, async_client: AsyncClient, db_session, add_product, user_headers):
        product = await add_product("Creatina", stock=1)

        response = await async_client.post("/api/orders", json={"items": [{"product_id": product.id, "quantity": 2}]}, headers=user_headers)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Estoque insuficiente para Creatina"
        assert (await db_session.execute(select(Product.stock))).scalar_one() == 1

    async def test_untracked_stock_is_not_limited(self, async_client: AsyncClient, add_product, user_headers):
        product = await add_product("E-book", stock=0, track_stock=False)

        response = await async_client.post("/api/orders", json={"items": [{"product_id": product.id, "quantity": 5}]}, headers=user_headers)

        assert response.status_code == 201

    async def test_unknown_product(self, async_client: AsyncClient, user_headers):
        response = await async_client.post("/api/orders", json={"items": [{"product_id": 42, "quantity": 1}]}, headers=user_headers)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Produto 42 não encontrado ou inativo"

    async def test_empty_order_is_invalid(self, async_client: AsyncClient, user_headers):
        response = await async_client.post("/api/orders", json={"items": []}, headers=user_headers)

        assert response.status_code == 400

    async def test_orders_are_private(self, async_client: AsyncClient, make_user, add_product, user_headers):
        product = await add_product()
        created = await async_client.post("/api/orders", json={"items": [{"product_id": product.id, "quantity": 1}]}, headers=user_headers)
        order_id = created.json()["data"]["order"]["id"]
        stranger = await make_user()

        mine = await async_client.get(f"/api/orders/{order_id}", headers=user_headers)
        theirs = await async_client.get(f"/api/orders/{order_id}", headers=auth_headers(stranger))
        listing = await async_client.get("/api/orders", headers=auth_headers(stranger))

        assert mine.status_code == 200
        assert theirs.status_code == 404
        assert listing.json()["data"]["orders"] == []

    async def test_admin_lists_orders_by_user(self, async_client: AsyncClient, user, add_product, user_headers, admin_headers):
        product = await add_product()
        await async_client.post("/api/orders", json={"items": [{"product_id": product.id, "quantity": 1}]}, headers=user_headers)

        response = await async_client.get("/api/admin/orders", params={"user_id": user.id}, headers=admin_headers)

        assert response.json()["data"]["pagination"]["total"] == 1

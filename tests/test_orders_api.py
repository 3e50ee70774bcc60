import re
from decimal import Decimal
import pytest
from sqlalchemy import func, select
import fusionmarkt.orders.services as order_services
import fusionmarkt.user.repository as user_repository
from fusionmarkt.orders.utils import find_history_entry
from fusionmarkt.schema.full_schema import (Address, Coupon, DiscountType, HistoryEntryType, Orders, ProductVariant,
                                            UserRole, Users)
from tests.helpers import (RecordingSender, auth_headers, fetch_order, order_payload, product_stock, seed_product,
                           seed_user, seed_variant, url_prefix, user_by_email)


async def count_orders(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(Orders))).scalar_one()


def fixed_numbers(monkeypatch, *numbers):
    it = iter(numbers)
    monkeypatch.setattr(order_services, "generate_order_number", lambda at=None: next(it))


@pytest.mark.asyncio
async def test_guest_bank_transfer_order(ac_client, app, session_factory, email_sender):
    await seed_product(session_factory, "p1", price=100, stock=10)

    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload())
    assert resp.status_code == 201
    data = resp.json()
    assert data["success"] is True
    assert re.fullmatch(r"FM-\d{4}-\d{5}", data["orderNumber"])
    assert data["status"] == "PENDING"
    assert data["paymentStatus"] == "PENDING"

    order = await fetch_order(session_factory, data["orderNumber"])
    assert order.total == Decimal("200.00")
    assert order.subtotal == Decimal("200.00")
    assert order.shipping_cost == Decimal("0.00")
    assert order.payment_method == "BANK_TRANSFER"
    assert order.stock_shortfall is False
    assert await product_stock(session_factory, "p1") == 8

    guest = await user_by_email(session_factory, "a@b.com")
    assert guest.is_guest is True
    assert guest.name == "A B"
    assert order.user_id == guest.id

    snapshot = find_history_entry(order.status_history, HistoryEntryType.ADDRESS_SNAPSHOT)
    assert snapshot["addresses"]["billingAddress"]["city"] == "Ankara"
    acceptance = find_history_entry(order.status_history, HistoryEntryType.CONTRACT_ACCEPTANCE)
    assert acceptance["contracts"]["termsAndConditions"] is True
    assert data["orderNumber"] in acceptance["contracts"]["distanceSalesContractHTML"]

    await app.state.notifier.drain()
    subjects = [m["subject"] for m in email_sender.to("a@b.com")]
    assert any("Ödeme Bekleniyor" in s for s in subjects)
    assert any("Hesabınız Oluşturuldu" in s for s in subjects)
    guest_mail = next(m for m in email_sender.to("a@b.com") if "Hesabınız" in m["subject"])
    assert f"/orders/{order.order_number}/set-password?token={order.contract_access_token}" in guest_mail["html"]
    assert len(email_sender.to("admin@shop.test")) == 1


@pytest.mark.asyncio
async def test_contracts_must_be_accepted(ac_client, session_factory):
    await seed_product(session_factory)
    payload = order_payload(contracts={"termsAndConditions": False, "distanceSalesContract": True})

    resp = await ac_client.post(f"{url_prefix}/orders", json=payload)
    assert resp.status_code == 400
    assert resp.json()["code"] == "CONTRACTS_NOT_ACCEPTED"
    assert await count_orders(session_factory) == 0
    assert await user_by_email(session_factory, "a@b.com") is None
    assert await product_stock(session_factory) == 10


@pytest.mark.asyncio
async def test_guest_checkout_with_registered_email(ac_client, session_factory):
    await seed_product(session_factory)
    await seed_user(session_factory, "a@b.com", name="Kayıtlı Kullanıcı")

    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload())
    assert resp.status_code == 409
    body = resp.json()
    assert body["code"] == "EMAIL_REGISTERED"
    assert body["userName"] == "Kayıtlı Kullanıcı"
    assert await count_orders(session_factory) == 0
    assert await product_stock(session_factory) == 10


@pytest.mark.asyncio
async def test_guest_email_registered_concurrently(ac_client, session_factory, monkeypatch):
    await seed_product(session_factory)
    await seed_user(session_factory, "a@b.com")

    # the other checkout commits between our lookup and our insert
    async def lookup_misses(session, email):
        return None
    monkeypatch.setattr(user_repository, "user_by_email", lookup_misses)

    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload())
    assert resp.status_code == 409
    assert resp.json()["code"] == "EMAIL_REGISTERED"
    assert await count_orders(session_factory) == 0
    assert await product_stock(session_factory) == 10
    async with session_factory() as session:
        users = (await session.execute(select(func.count()).select_from(Users).where(Users.email == "a@b.com")))
        assert users.scalar_one() == 1


@pytest.mark.asyncio
async def test_signed_in_buyer(ac_client, app, session_factory, settings, email_sender):
    await seed_product(session_factory)
    user = await seed_user(session_factory, "a@b.com")

    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload(), headers=auth_headers(user, settings))
    assert resp.status_code == 201
    order = await fetch_order(session_factory, resp.json()["orderNumber"])
    assert order.user_id == user.id

    await app.state.notifier.drain()
    assert not any("Hesabınız" in m["subject"] for m in email_sender.sent)


@pytest.mark.asyncio
@pytest.mark.parametrize("payload,error", [
    (order_payload(items=[]), "Sepet boş"),
    (order_payload(billingAddress=None), "Fatura adresi gerekli"),
    (order_payload(billingAddress={"firstName": "A", "city": "Ankara"}), "Fatura adresi eksik bilgi içeriyor"),
    (order_payload(billingAddress={"firstName": "A", "email": "not-an-email"}), "Geçerli bir e-posta adresi girin"),
    (order_payload(items=[{"productId": "p1", "quantity": 0}]), "Geçersiz istek verisi"),
])
async def test_invalid_order_requests(ac_client, session_factory, payload, error):
    await seed_product(session_factory)
    resp = await ac_client.post(f"{url_prefix}/orders", json=payload)
    assert resp.status_code == 400
    assert resp.json()["error"] == error
    assert await count_orders(session_factory) == 0


@pytest.mark.asyncio
async def test_malformed_json(ac_client):
    resp = await ac_client.post(f"{url_prefix}/orders", content=b"{not json",
                                headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Geçersiz istek verisi"


@pytest.mark.asyncio
async def test_unknown_or_inactive_product(ac_client, session_factory):
    await seed_product(session_factory, "p2", is_active=False)

    for pid in ("missing", "p2"):
        payload = order_payload(items=[{"productId": pid, "quantity": 1}])
        resp = await ac_client.post(f"{url_prefix}/orders", json=payload)
        assert resp.status_code == 400
        assert resp.json()["code"] == "PRODUCT_UNAVAILABLE"
    assert await count_orders(session_factory) == 0


@pytest.mark.asyncio
async def test_prices_come_from_the_catalog(ac_client, session_factory):
    await seed_product(session_factory)
    payload = order_payload(items=[{"productId": "p1", "price": 1, "quantity": 2}],
                            totals={"subtotal": 2, "grandTotal": 2})

    resp = await ac_client.post(f"{url_prefix}/orders", json=payload)
    assert resp.status_code == 201
    order = await fetch_order(session_factory, resp.json()["orderNumber"])
    assert order.total == Decimal("200.00")


@pytest.mark.asyncio
async def test_variant_price_and_stock(ac_client, session_factory):
    product = await seed_product(session_factory, stock=10)
    await seed_variant(session_factory, product, "v1", price=150, stock=5)
    payload = order_payload(items=[{"productId": "p1", "variant": {"id": "v1", "name": "Renk", "value": "Siyah"},
                                    "quantity": 2}])

    resp = await ac_client.post(f"{url_prefix}/orders", json=payload)
    assert resp.status_code == 201
    order = await fetch_order(session_factory, resp.json()["orderNumber"])
    assert order.total == Decimal("300.00")

    async with session_factory() as session:
        variant_stock = (await session.execute(
            select(ProductVariant.stock).where(ProductVariant.public_id == "v1"))).scalar_one()
    assert variant_stock == 3
    assert await product_stock(session_factory) == 10


@pytest.mark.asyncio
async def test_coupon_is_applied_and_consumed(ac_client, session_factory):
    await seed_product(session_factory)
    async with session_factory() as session:
        session.add(Coupon(code="YUZDE10", discount_type=DiscountType.PERCENTAGE.value, discount_value=Decimal("10")))
        await session.commit()

    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload(couponCode="yuzde10"))
    assert resp.status_code == 201
    order = await fetch_order(session_factory, resp.json()["orderNumber"])
    assert order.discount == Decimal("20.00")
    assert order.total == Decimal("180.00")
    assert order.coupon_code == "YUZDE10"

    async with session_factory() as session:
        used = (await session.execute(select(Coupon.used_count).where(Coupon.code == "YUZDE10"))).scalar_one()
    assert used == 1


@pytest.mark.asyncio
async def test_unknown_coupon_is_ignored(ac_client, session_factory):
    await seed_product(session_factory)
    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload(couponCode="YOK"))
    assert resp.status_code == 201
    order = await fetch_order(session_factory, resp.json()["orderNumber"])
    assert order.discount == Decimal("0.00")
    assert order.coupon_code is None


@pytest.mark.asyncio
async def test_opted_in_address_is_saved(ac_client, session_factory):
    await seed_product(session_factory)
    billing = dict(order_payload()["billingAddress"], saveToAddresses=True)

    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload(billingAddress=billing))
    assert resp.status_code == 201
    order = await fetch_order(session_factory, resp.json()["orderNumber"])
    assert order.billing_address_id is not None
    assert order.shipping_address_id == order.billing_address_id

    async with session_factory() as session:
        address = await session.get(Address, order.billing_address_id)
    assert address.type == "BILLING"
    assert address.city == "Ankara"


@pytest.mark.asyncio
async def test_stock_shortfall_is_recorded(ac_client, session_factory, settings):
    await seed_product(session_factory, stock=1)
    admin = await seed_user(session_factory, "admin@shop.test", role=UserRole.ADMIN.value, name="Admin")

    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload())
    assert resp.status_code == 201
    number = resp.json()["orderNumber"]

    assert await product_stock(session_factory) == 1
    order = await fetch_order(session_factory, number)
    assert order.stock_shortfall is True
    entry = find_history_entry(order.status_history, HistoryEntryType.STOCK_SHORTFALL)
    assert entry["items"][0]["reason"] == "insufficient_stock"
    assert entry["items"][0]["quantity"] == 2

    resp = await ac_client.get(f"{url_prefix}/admin/orders/stock-shortfalls", headers=auth_headers(admin, settings))
    assert resp.status_code == 200
    report = resp.json()
    assert report["count"] == 1
    assert report["orders"][0]["orderNumber"] == number


@pytest.mark.asyncio
async def test_order_number_collision_is_retried(ac_client, session_factory, monkeypatch):
    await seed_product(session_factory)

    fixed_numbers(monkeypatch, "FM-2026-00001")
    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload())
    assert resp.json()["orderNumber"] == "FM-2026-00001"

    fixed_numbers(monkeypatch, "FM-2026-00001", "FM-2026-00002")
    billing = dict(order_payload()["billingAddress"], email="c@d.com")
    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload(billingAddress=billing))
    assert resp.status_code == 201
    assert resp.json()["orderNumber"] == "FM-2026-00002"

    assert await count_orders(session_factory) == 2
    assert await product_stock(session_factory) == 6
    assert (await user_by_email(session_factory, "c@d.com")).is_guest


@pytest.mark.asyncio
async def test_order_number_attempts_exhausted(ac_client, session_factory, settings, monkeypatch):
    await seed_product(session_factory)
    fixed_numbers(monkeypatch, "FM-2026-00001")
    await ac_client.post(f"{url_prefix}/orders", json=order_payload())

    fixed_numbers(monkeypatch, *["FM-2026-00001"] * settings.ORDER_NUMBER_MAX_ATTEMPTS)
    billing = dict(order_payload()["billingAddress"], email="c@d.com")
    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload(billingAddress=billing))
    assert resp.status_code == 500
    assert resp.json()["error"] == "Sipariş oluşturulamadı"
    assert await count_orders(session_factory) == 1
    assert await user_by_email(session_factory, "c@d.com") is None
    assert await product_stock(session_factory) == 8


@pytest.mark.asyncio
async def test_mail_failure_does_not_fail_the_order(ac_client, app, session_factory):
    await seed_product(session_factory)
    app.state.notifier.sender = RecordingSender(fail=True)

    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload())
    assert resp.status_code == 201
    await app.state.notifier.drain()
    assert await count_orders(session_factory) == 1


@pytest.mark.asyncio
async def test_my_orders(ac_client, session_factory, settings):
    await seed_product(session_factory)
    user = await seed_user(session_factory, "a@b.com")
    headers = auth_headers(user, settings)

    resp = await ac_client.get(f"{url_prefix}/orders")
    assert resp.status_code == 401

    resp = await ac_client.get(f"{url_prefix}/orders", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401

    created = await ac_client.post(f"{url_prefix}/orders", json=order_payload(), headers=headers)
    resp = await ac_client.get(f"{url_prefix}/orders", headers=headers)
    assert resp.status_code == 200
    orders = resp.json()["orders"]
    assert [o["orderNumber"] for o in orders] == [created.json()["orderNumber"]]
    assert orders[0]["total"] == 200.0
    assert orders[0]["items"][0]["productId"] == "p1"
    assert orders[0]["items"][0]["quantity"] == 2
    assert orders[0]["billingAddress"]["fullName"] == "A B"


@pytest.mark.asyncio
async def test_contracts_by_access_token(ac_client, session_factory):
    await seed_product(session_factory)
    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload())
    order = await fetch_order(session_factory, resp.json()["orderNumber"])
    base = f"{url_prefix}/orders/{order.order_number}/contracts"

    resp = await ac_client.get(base, params={"token": order.contract_access_token})
    assert resp.status_code == 200
    body = resp.json()
    assert body["orderNumber"] == order.order_number
    assert body["contracts"]["termsAndConditions"]["accepted"] is True
    assert "KULLANICI SÖZLEŞMESİ" in body["contracts"]["termsAndConditions"]["html"]

    resp = await ac_client.get(base, params={"token": order.contract_access_token, "type": "distance"})
    assert resp.json()["type"] == "distanceSalesContract"
    assert "MESAFELİ SATIŞ SÖZLEŞMESİ" in resp.json()["html"]

    resp = await ac_client.get(base, params={"token": "wrong"})
    assert resp.status_code == 403
    assert resp.json()["code"] == "ACCESS_DENIED"

    resp = await ac_client.get(f"{url_prefix}/orders/FM-2000-00000/contracts", params={"token": "x"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_owner_reads_contracts_without_token(ac_client, session_factory, settings):
    await seed_product(session_factory)
    user = await seed_user(session_factory, "a@b.com")
    headers = auth_headers(user, settings)
    created = await ac_client.post(f"{url_prefix}/orders", json=order_payload(), headers=headers)

    resp = await ac_client.get(f"{url_prefix}/orders/{created.json()['orderNumber']}/contracts",
                               params={"type": "terms"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["type"] == "termsAndConditions"


@pytest.mark.asyncio
async def test_guest_sets_password(ac_client, session_factory):
    await seed_product(session_factory)
    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload())
    order = await fetch_order(session_factory, resp.json()["orderNumber"])
    url = f"{url_prefix}/orders/{order.order_number}/set-password"

    resp = await ac_client.post(url, json={"token": order.contract_access_token, "password": "yeni-sifre-1"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Şifreniz başarıyla oluşturuldu", "email": "a@b.com"}
    assert (await user_by_email(session_factory, "a@b.com")).is_guest is False

    resp = await ac_client.post(url, json={"token": order.contract_access_token, "password": "baska-sifre-2"})
    assert resp.status_code == 409
    assert resp.json()["code"] == "PASSWORD_ALREADY_SET"


@pytest.mark.asyncio
async def test_set_password_rejections(ac_client, session_factory):
    await seed_product(session_factory)
    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload())
    order = await fetch_order(session_factory, resp.json()["orderNumber"])
    url = f"{url_prefix}/orders/{order.order_number}/set-password"

    resp = await ac_client.post(url, json={"token": order.contract_access_token, "password": "abc"})
    assert resp.status_code == 400

    resp = await ac_client.post(url, json={"token": "wrong", "password": "yeni-sifre-1"})
    assert resp.status_code == 403
    assert (await user_by_email(session_factory, "a@b.com")).is_guest is True

from datetime import datetime, timezone
import pytest
from fusionmarkt.notifications.templates import render


def test_order_pending_payment_has_bank_details():
    subject, html = render("order_pending_payment", {"order_number": "FM-2026-00001", "customer_name": "A B",
                                                     "total": 200})
    assert subject == "FusionMarkt - Ödeme Bekleniyor #FM-2026-00001"
    assert "IBAN" in html
    assert "₺200,00" in html
    assert "Merhaba A B," in html


def test_payment_confirmed():
    subject, html = render("payment_confirmed", {"order_number": "FM-2026-00002", "customer_name": None,
                                                 "total": 1234.5})
    assert "Ödemeniz Onaylandı" in subject
    assert "₺1.234,50" in html
    assert "Merhaba," in html


def test_guest_account_link_is_escaped():
    url = "https://shop.test/orders/FM-2026-00001/set-password?token=abc&x=1"
    subject, html = render("guest_account_created", {"customer_name": "A", "set_password_url": url})
    assert subject == "FusionMarkt - Hesabınız Oluşturuldu"
    assert "token=abc&amp;x=1" in html


def test_status_changed_shipped_with_tracking():
    subject, html = render("order_status_changed", {"order_number": "FM-2026-00003", "customer_name": "A",
                                                    "status": "SHIPPED", "tracking_number": "TRK123",
                                                    "carrier_name": "Yurtiçi"})
    assert "Kargoya Verildi" in subject
    assert "TRK123" in html
    assert "(Yurtiçi)" in html


def test_status_changed_label():
    subject, _ = render("order_status_changed", {"order_number": "FM-2026-00003", "customer_name": "A",
                                                 "status": "CONFIRMED"})
    assert subject == "FusionMarkt - Sipariş Durumu: Onaylandı #FM-2026-00003"


def test_admin_new_order():
    subject, html = render("admin_new_order", {
        "order_number": "FM-2026-00004",
        "order_date": datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc),
        "customer_name": "A B",
        "customer_email": "a@b.com",
        "customer_phone": "+905551112233",
        "total": 200,
        "item_count": 2,
        "payment_method": "BANK_TRANSFER",
        "shipping_city": "Ankara",
        "items": [{"name": "Güç Kaynağı", "quantity": 2, "price": 100}],
    })
    assert subject == "🔔 Yeni Sipariş #FM-2026-00004 - ₺200,00"
    assert "Havale / EFT" in html
    assert "01.01.2026 12:00" in html
    assert "Güç Kaynağı" in html


def test_unknown_kind():
    with pytest.raises(ValueError):
        render("nope", {})

import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import pytest
from fusionmarkt.config.settings import Settings, config_settings
from fusionmarkt.orders.utils import (PricedLine, build_address_snapshot, client_totals_mismatch,
                                      compute_order_totals, coupon_discount, find_history_entry,
                                      generate_order_number, initial_status_history, map_payment_method)
from fusionmarkt.schema.full_schema import Coupon, DiscountType, HistoryEntryType, PaymentMethod

AT = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def line(price, quantity, pid="p1"):
    return PricedLine(product_id=1, product_public_id=pid, name="Ürün", category=None, variant_id=None,
                      variant=None, bundle_id=None, bundle_item_variants=None,
                      unit_price=Decimal(str(price)), quantity=quantity)


@pytest.fixture
def tax_included():
    return config_settings.model_copy(update={
        "SHIPPING_FEE": Decimal("100"),
        "FREE_SHIPPING_THRESHOLD": Decimal("2000"),
        "TAX_RATE": Decimal("0.20"),
        "PRICES_INCLUDE_TAX": True,
    })


def test_order_number_format():
    number = generate_order_number(AT)
    assert re.fullmatch(r"FM-2026-\d{5}", number)
    assert generate_order_number(AT, randbelow=lambda n: 42) == "FM-2026-00042"


@pytest.mark.parametrize("raw,expected", [
    ("credit_card", PaymentMethod.CREDIT_CARD),
    ("card_sipay", PaymentMethod.CREDIT_CARD),
    ("bank_transfer", PaymentMethod.BANK_TRANSFER),
    ("havale", PaymentMethod.BANK_TRANSFER),
    (None, PaymentMethod.BANK_TRANSFER),
])
def test_map_payment_method(raw, expected):
    assert map_payment_method(raw) == expected


def test_address_snapshot_falls_back_to_billing():
    billing = {"firstName": "Ayşe", "lastName": "Yılmaz", "city": "Ankara", "addressLine1": "Atatürk Blv. 1"}
    snap = build_address_snapshot(billing)

    assert snap["shippingSameAsBilling"] is True
    assert snap["billingAddress"]["fullName"] == "Ayşe Yılmaz"
    assert snap["shippingAddress"] == snap["billingAddress"]
    assert snap["billingAddress"]["address"] == "Atatürk Blv. 1"


def test_initial_history_carries_snapshot_and_contracts():
    history = initial_status_history({"billingAddress": {}}, {"termsAndConditions": True}, AT)

    assert history[0]["status"] == "PENDING"
    assert find_history_entry(history, HistoryEntryType.ADDRESS_SNAPSHOT)["addresses"] == {"billingAddress": {}}
    assert find_history_entry(history, HistoryEntryType.CONTRACT_ACCEPTANCE)["contracts"]["termsAndConditions"]
    assert find_history_entry(history, HistoryEntryType.STOCK_SHORTFALL) is None


def test_totals_tax_included_with_shipping(tax_included):
    totals = compute_order_totals([line(100, 2)], None, tax_included, AT)

    assert totals.subtotal == Decimal("200.00")
    assert totals.shipping == Decimal("100.00")
    assert totals.discount == Decimal("0.00")
    assert totals.total == Decimal("300.00")
    # KDV share already inside the catalog price
    assert totals.tax == Decimal("33.33")


def test_totals_default_settings_charge_no_shipping():
    totals = compute_order_totals([line(100, 2)], None, Settings(), AT)
    assert totals.shipping == Decimal("0.00")
    assert totals.total == Decimal("200.00")


def test_totals_free_shipping_over_threshold(tax_included):
    totals = compute_order_totals([line(1000, 2)], None, tax_included, AT)
    assert totals.shipping == Decimal("0.00")
    assert totals.total == Decimal("2000.00")


def test_totals_tax_excluded(tax_included):
    settings = tax_included.model_copy(update={"PRICES_INCLUDE_TAX": False})
    totals = compute_order_totals([line(100, 2)], None, settings, AT)
    assert totals.tax == Decimal("40.00")
    assert totals.total == Decimal("340.00")


def test_totals_percentage_coupon(tax_included):
    coupon = Coupon(id=7, code="YUZDE10", discount_type=DiscountType.PERCENTAGE.value, discount_value=Decimal("10"))
    totals = compute_order_totals([line(100, 2)], coupon, tax_included, AT)

    assert totals.discount == Decimal("20.00")
    assert totals.total == Decimal("280.00")
    assert totals.tax == Decimal("30.00")
    assert totals.coupon_id == 7
    assert totals.coupon_code == "YUZDE10"


def test_coupon_limits():
    fixed = Coupon(code="SABIT", discount_type=DiscountType.FIXED.value, discount_value=Decimal("500"))
    assert coupon_discount(fixed, Decimal("200.00"), AT) == Decimal("200.00")

    capped = Coupon(code="CAP", discount_type=DiscountType.PERCENTAGE.value, discount_value=Decimal("50"),
                    max_discount=Decimal("30"))
    assert coupon_discount(capped, Decimal("200.00"), AT) == Decimal("30.00")


@pytest.mark.parametrize("overrides", [
    {"is_active": False},
    {"expires_at": AT - timedelta(days=1)},
    {"starts_at": AT + timedelta(days=1)},
    {"usage_limit": 5, "used_count": 5},
    {"min_order_amount": Decimal("500")},
])
def test_unusable_coupon_grants_nothing(overrides, tax_included):
    coupon = Coupon(id=3, code="X", discount_type=DiscountType.PERCENTAGE.value, discount_value=Decimal("10"),
                    **overrides)
    totals = compute_order_totals([line(100, 2)], coupon, tax_included, AT)

    assert totals.discount == Decimal("0.00")
    assert totals.coupon_id is None
    assert totals.coupon_code is None


def test_client_totals_mismatch(tax_included):
    totals = compute_order_totals([line(100, 2)], None, tax_included, AT)

    assert client_totals_mismatch(None, totals) == {}
    assert client_totals_mismatch({"subtotal": Decimal("200"), "grand_total": Decimal("300")}, totals) == {}

    diff = client_totals_mismatch({"subtotal": Decimal("150"), "grand_total": None}, totals)
    assert set(diff) == {"subtotal"}
    assert diff["subtotal"] == {"client": "150", "server": "200.00"}

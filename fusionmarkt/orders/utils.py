import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
import orjson
from fusionmarkt.common.utils import as_aware, iso, now, to_money
from fusionmarkt.schema.full_schema import Coupon, DiscountType, HistoryEntryType, OrderStatus, PaymentMethod

ORDER_NUMBER_PREFIX = "FM"
CARD_PAYMENT_CHOICES = ("credit_card", "card_sipay")


def generate_order_number(at: Optional[datetime] = None, randbelow: Callable[[int], int] = secrets.randbelow) -> str:
    """``FM-{year}-{5 digits}``. Not unique by construction, callers insert it against a unique column."""
    at = at or now()
    return f"{ORDER_NUMBER_PREFIX}-{at.year}-{randbelow(100000):05d}"


def map_payment_method(raw: Optional[str]) -> PaymentMethod:
    if raw in CARD_PAYMENT_CHOICES:
        return PaymentMethod.CREDIT_CARD
    return PaymentMethod.BANK_TRANSFER


def _address_snapshot(addr: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "fullName": f"{addr.get('firstName') or ''} {addr.get('lastName') or ''}".strip(),
        "firstName": addr.get("firstName"),
        "lastName": addr.get("lastName"),
        "phone": addr.get("phone"),
        "city": addr.get("city"),
        "district": addr.get("district"),
        "postalCode": addr.get("postalCode"),
        "addressLine1": addr.get("addressLine1"),
        "addressLine2": addr.get("addressLine2"),
        "address": addr.get("addressLine1"),
    }


def build_address_snapshot(billing: Dict[str, Any], shipping: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Frozen copies of the addresses as typed at checkout, shipping falls back to billing."""
    return {
        "billingAddress": _address_snapshot(billing),
        "shippingAddress": _address_snapshot(shipping or billing),
        "shippingSameAsBilling": not shipping,
    }


def build_contract_acceptance(terms_and_conditions: bool, distance_sales_contract: bool, newsletter: bool,
                              terms_html: str, distance_sales_html: str, accepted_at: datetime) -> Dict[str, Any]:
    return {
        "termsAndConditions": terms_and_conditions,
        "distanceSalesContract": distance_sales_contract,
        "newsletter": newsletter,
        "acceptedAt": iso(accepted_at),
        "termsAndConditionsHTML": terms_html,
        "distanceSalesContractHTML": distance_sales_html,
    }


def status_entry(status: str, note: str, at: Optional[datetime] = None, **extra: Any) -> Dict[str, Any]:
    entry = {"status": status, "date": iso(at or now()), "note": note}
    entry.update(extra)
    return entry


def typed_entry(entry_type: HistoryEntryType, note: str, at: Optional[datetime] = None, **extra: Any) -> Dict[str, Any]:
    entry = {"type": entry_type.value, "date": iso(at or now()), "note": note}
    entry.update(extra)
    return entry


def initial_status_history(address_snapshot: Dict[str, Any], contract_acceptance: Dict[str, Any],
                           at: datetime) -> List[Dict[str, Any]]:
    return [
        status_entry(OrderStatus.PENDING.value, "Sipariş oluşturuldu", at),
        typed_entry(HistoryEntryType.ADDRESS_SNAPSHOT, "Sipariş adresleri kaydedildi", at, addresses=address_snapshot),
        typed_entry(HistoryEntryType.CONTRACT_ACCEPTANCE, "Sözleşmeler elektronik ortamda onaylandı", at,
                    contracts=contract_acceptance),
    ]


def find_history_entry(history: Optional[List[Dict[str, Any]]], entry_type: HistoryEntryType) -> Optional[Dict[str, Any]]:
    for entry in history or []:
        if entry.get("type") == entry_type.value:
            return entry
    return None


def serialize_variant_info(variant: Optional[Dict[str, Any]], bundle_item_variants: Optional[Dict[str, Any]]) -> Optional[str]:
    if not variant and not bundle_item_variants:
        return None
    return orjson.dumps({"variant": variant or None, "bundleItemVariants": bundle_item_variants or None}).decode()


def parse_variant_info(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    return orjson.loads(raw) if raw else None


@dataclass
class PricedLine:
    """One cart line priced from the catalog, not from the request."""
    product_id: int
    product_public_id: str
    name: str
    category: Optional[str]
    variant_id: Optional[int]
    variant: Optional[Dict[str, Any]]
    bundle_id: Optional[str]
    bundle_item_variants: Optional[Dict[str, Any]]
    unit_price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


@dataclass
class OrderTotals:
    subtotal: Decimal
    shipping: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    coupon_id: Optional[int] = None
    coupon_code: Optional[str] = None
    lines: List[PricedLine] = field(default_factory=list)

    def as_dict(self) -> Dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "shipping": float(self.shipping),
            "discount": float(self.discount),
            "tax": float(self.tax),
            "grandTotal": float(self.total),
        }


def coupon_discount(coupon: Optional[Coupon], subtotal: Decimal, at: Optional[datetime] = None) -> Decimal:
    """Discount a coupon grants on ``subtotal``, zero when it is not currently usable."""
    if coupon is None or not coupon.is_active:
        return Decimal("0.00")
    at = at or now()
    if coupon.starts_at and as_aware(coupon.starts_at) > at:
        return Decimal("0.00")
    if coupon.expires_at and as_aware(coupon.expires_at) < at:
        return Decimal("0.00")
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        return Decimal("0.00")
    if coupon.min_order_amount is not None and subtotal < coupon.min_order_amount:
        return Decimal("0.00")

    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        amount = subtotal * Decimal(coupon.discount_value) / Decimal(100)
    else:
        amount = Decimal(coupon.discount_value)
    if coupon.max_discount is not None:
        amount = min(amount, Decimal(coupon.max_discount))
    return to_money(min(amount, subtotal))


def compute_order_totals(lines: List[PricedLine], coupon: Optional[Coupon], settings,
                         at: Optional[datetime] = None) -> OrderTotals:
    """
    total = subtotal + shipping - discount, plus tax when catalog prices exclude it.
    With tax-inclusive prices ``tax`` is the KDV share already inside the total.
    """
    subtotal = to_money(sum((ln.subtotal for ln in lines), Decimal("0")))
    discount = coupon_discount(coupon, subtotal, at)
    discounted = subtotal - discount

    shipping = Decimal("0.00") if discounted >= settings.FREE_SHIPPING_THRESHOLD else to_money(settings.SHIPPING_FEE)

    rate = Decimal(settings.TAX_RATE)
    if settings.PRICES_INCLUDE_TAX:
        tax = to_money(discounted * rate / (Decimal(1) + rate))
        total = to_money(subtotal + shipping - discount)
    else:
        tax = to_money(discounted * rate)
        total = to_money(subtotal + shipping - discount + tax)

    return OrderTotals(
        subtotal=subtotal, shipping=shipping, discount=discount, tax=tax, total=total,
        coupon_id=coupon.id if coupon is not None and discount > 0 else None,
        coupon_code=coupon.code if coupon is not None and discount > 0 else None,
        lines=lines,
    )


def client_totals_mismatch(client_totals: Optional[Dict[str, Any]], totals: OrderTotals) -> Dict[str, Any]:
    """Fields where the storefront's displayed totals differ from the server's."""
    if not client_totals:
        return {}
    server = {"subtotal": totals.subtotal, "shipping": totals.shipping,
              "discount": totals.discount, "grand_total": totals.total}
    diff = {}
    for key, server_value in server.items():
        client_value = client_totals.get(key)
        if client_value is not None and to_money(client_value) != server_value:
            diff[key] = {"client": str(client_value), "server": str(server_value)}
    return diff

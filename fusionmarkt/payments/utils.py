import time
from decimal import Decimal
from typing import Any, Dict, List, Optional
from fusionmarkt.common.utils import to_money
from fusionmarkt.payments.constants import (BASKET_ITEM_NAME_MAX, DEFAULT_CATEGORY, DEFAULT_GSM,
                                            DEFAULT_IDENTITY_NUMBER, DEFAULT_ZIP_CODE)
from fusionmarkt.payments.iyzico import format_price
from fusionmarkt.payments.models import PaymentInitIn
from fusionmarkt.schema.full_schema import Orders


def normalize_card(card) -> Dict[str, str]:
    year = card.expire_year.strip()
    if len(year) == 2:
        year = "20" + year
    return {
        "cardHolderName": card.card_holder_name.strip(),
        "cardNumber": "".join(card.card_number.split()),
        "expireMonth": card.expire_month.strip().zfill(2),
        "expireYear": year,
        "cvc": card.cvc.strip(),
        "registerCard": "0",
    }


def _spread_discount(amounts: List[Decimal], discount: Decimal) -> List[Decimal]:
    """Split ``discount`` over the lines pro rata, the rounding remainder goes to the last line."""
    base = sum(amounts, Decimal("0"))
    if discount <= 0 or base <= 0:
        return amounts
    shares = [to_money(a * discount / base) for a in amounts[:-1]]
    shares.append(to_money(discount - sum(shares, Decimal("0"))))
    return [to_money(a - s) for a, s in zip(amounts, shares)]


def build_basket_items(order: Orders) -> List[Dict[str, Any]]:
    """
    Basket lines that add up to ``order.total``: item subtotals net of the coupon
    discount, plus shipping and (for tax-exclusive prices) tax as virtual lines.
    Zero priced lines are left out, the gateway rejects them.
    """
    items = list(order.items)
    amounts = _spread_discount([to_money(it.subtotal) for it in items], to_money(order.discount))

    basket = []
    for it, amount in zip(items, amounts):
        if amount <= 0:
            continue
        product = it.product
        basket.append({
            "id": product.public_id if product else str(it.product_id),
            "name": (product.name if product else "Ürün")[:BASKET_ITEM_NAME_MAX],
            "category1": (product.category if product else None) or DEFAULT_CATEGORY,
            "category2": DEFAULT_CATEGORY,
            "itemType": "PHYSICAL",
            "price": format_price(amount),
        })

    extras = to_money(order.total) - sum((to_money(a) for a in amounts if a > 0), Decimal("0"))
    shipping = min(to_money(order.shipping_cost), extras)
    if shipping > 0:
        basket.append({"id": "SHIPPING", "name": "Kargo", "category1": "Kargo", "category2": DEFAULT_CATEGORY,
                       "itemType": "VIRTUAL", "price": format_price(shipping)})
    tax_line = extras - max(shipping, Decimal("0"))
    if tax_line > 0:
        basket.append({"id": "TAX", "name": "KDV", "category1": "Vergi", "category2": DEFAULT_CATEGORY,
                       "itemType": "VIRTUAL", "price": format_price(tax_line)})
    return basket


def _address(snapshot: Dict[str, Any]) -> Dict[str, str]:
    return {
        "contactName": snapshot.get("fullName") or "-",
        "city": snapshot.get("city") or "-",
        "country": "Turkey",
        "address": snapshot.get("addressLine1") or "-",
        "zipCode": snapshot.get("postalCode") or DEFAULT_ZIP_CODE,
    }


def build_threeds_request(order: Orders, payload: PaymentInitIn, addresses: Dict[str, Any], user,
                          client_ip: str, callback_url: str) -> Dict[str, Any]:
    billing = addresses.get("billingAddress") or {}
    shipping = addresses.get("shippingAddress") or billing
    buyer_in = payload.buyer

    identity_number = (buyer_in.identity_number if buyer_in else None) or DEFAULT_IDENTITY_NUMBER
    gsm_number = (buyer_in.gsm_number if buyer_in else None) or billing.get("phone") or DEFAULT_GSM
    first_name = billing.get("firstName") or (user.name if user else None) or "-"

    buyer = {
        "id": str(user.public_id) if user else f"GUEST-{int(time.time() * 1000)}",
        "name": first_name,
        "surname": billing.get("lastName") or first_name,
        "gsmNumber": gsm_number,
        "email": user.email if user else "",
        "identityNumber": identity_number,
        "registrationAddress": billing.get("addressLine1") or "-",
        "ip": client_ip,
        "city": billing.get("city") or "-",
        "country": "Turkey",
        "zipCode": billing.get("postalCode") or DEFAULT_ZIP_CODE,
    }

    total = format_price(order.total)
    return {
        "locale": "tr",
        "conversationId": order.order_number,
        "price": total,
        "paidPrice": total,
        "currency": order.currency,
        "installment": str(payload.installment),
        "basketId": order.order_number,
        "paymentChannel": "WEB",
        "paymentGroup": "PRODUCT",
        "callbackUrl": callback_url,
        "paymentCard": normalize_card(payload.card),
        "buyer": buyer,
        "shippingAddress": _address(shipping),
        "billingAddress": _address(billing),
        "basketItems": build_basket_items(order),
    }


def item_transactions(result) -> List[Dict[str, Any]]:
    """Per basket line transaction ids, needed later for refunds."""
    return [
        {
            "itemId": it.get("itemId"),
            "paymentTransactionId": it.get("paymentTransactionId"),
            "price": it.get("price"),
            "paidPrice": it.get("paidPrice"),
        }
        for it in result.get("itemTransactions") or []
    ]


def plan_refund(transactions: List[Dict[str, Any]], amount: Optional[Decimal]) -> List[Dict[str, Any]]:
    """
    Split a refund over the stored item transactions in order.
    ``amount=None`` refunds every transaction in full.
    """
    plan = []
    remaining = to_money(amount) if amount is not None else None
    for tx in transactions:
        paid = to_money(tx.get("paidPrice") or tx.get("price") or 0)
        if paid <= 0:
            continue
        if remaining is None:
            plan.append({"paymentTransactionId": tx["paymentTransactionId"], "price": paid})
            continue
        if remaining <= 0:
            break
        portion = min(paid, remaining)
        plan.append({"paymentTransactionId": tx["paymentTransactionId"], "price": portion})
        remaining -= portion
    return plan

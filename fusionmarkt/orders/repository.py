from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload
from fusionmarkt.common.custom_exceptions import CheckoutError
from fusionmarkt.common.logging_setup import get_logger
from fusionmarkt.common.utils import iso, now, to_number
from fusionmarkt.orders.models import AddressIn, OrderItemIn
from fusionmarkt.orders.utils import PricedLine, find_history_entry, parse_variant_info, serialize_variant_info, typed_entry
from fusionmarkt.schema.full_schema import (Address, AddressType, Coupon, HistoryEntryType, OrderItem, Orders,
                                            Product, ProductVariant, Users)

logger = get_logger("fusionmarkt.orders")


@dataclass
class StockAdjustment:
    adjusted: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)


async def price_order_items(session, items: List[OrderItemIn]) -> List[PricedLine]:
    """Price every cart line from the catalog. Unknown or inactive products reject the whole cart."""
    product_pids = {it.product_id for it in items}
    res = await session.execute(select(Product).where(Product.public_id.in_(product_pids)))
    products = {p.public_id: p for p in res.scalars().all()}

    variant_pids = {it.variant.id for it in items if it.variant and it.variant.id}
    variants: Dict[str, ProductVariant] = {}
    if variant_pids:
        res = await session.execute(select(ProductVariant).where(ProductVariant.public_id.in_(variant_pids)))
        variants = {v.public_id: v for v in res.scalars().all()}

    lines = []
    for it in items:
        product = products.get(it.product_id)
        if product is None or not product.is_active:
            raise CheckoutError(f"Ürün satışta değil: {it.name or it.product_id}", code="PRODUCT_UNAVAILABLE",
                                productId=it.product_id)

        unit_price = product.price
        variant_id = None
        variant_dict = None
        if it.variant:
            variant_dict = it.variant.model_dump(exclude_none=True)
            if it.variant.id:
                variant = variants.get(it.variant.id)
                if variant is None or variant.product_id != product.id:
                    raise CheckoutError(f"Ürün seçeneği bulunamadı: {it.name or product.name}",
                                        code="VARIANT_UNAVAILABLE", productId=it.product_id)
                variant_id = variant.id
                if variant.price is not None:
                    unit_price = variant.price

        lines.append(PricedLine(
            product_id=product.id,
            product_public_id=product.public_id,
            name=product.name,
            category=product.category,
            variant_id=variant_id,
            variant=variant_dict,
            bundle_id=it.bundle_id if it.is_bundle else None,
            bundle_item_variants=it.bundle_item_variants,
            unit_price=unit_price,
            quantity=it.quantity,
        ))
    return lines


async def coupon_by_code(session, code: Optional[str]) -> Optional[Coupon]:
    if not code or not code.strip():
        return None
    stmt = select(Coupon).where(func.upper(Coupon.code) == code.strip().upper())
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def consume_coupon(session, coupon_id: int) -> bool:
    stmt = (
        update(Coupon)
        .where(Coupon.id == coupon_id,
               or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit))
        .values(used_count=Coupon.used_count + 1)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        logger.warning("coupon.usage_limit_reached", extra={"coupon_id": coupon_id})
        return False
    return True


async def _owned_address_id(session, user_id: int, address_id: int) -> Optional[int]:
    stmt = select(Address.id).where(Address.id == address_id, Address.user_id == user_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def save_address(session, user_id: int, addr: AddressIn, address_type: AddressType) -> Optional[int]:
    """Link an address book row to the order. New rows are only written when the buyer opted in."""
    if addr.id is not None:
        owned = await _owned_address_id(session, user_id, addr.id)
        if owned is not None:
            return owned

    if not addr.save_to_addresses:
        return None

    row = Address(
        user_id=user_id,
        type=address_type.value,
        title=addr.title,
        first_name=addr.first_name,
        last_name=addr.last_name,
        phone=addr.phone,
        city=addr.city or "",
        district=addr.district,
        postal_code=addr.postal_code,
        address_line1=addr.address_line1 or "",
        address_line2=addr.address_line2,
        country=addr.country or "Türkiye",
    )
    session.add(row)
    await session.flush()
    return row.id


async def insert_order(session, order: Orders, lines: List[PricedLine]) -> Orders:
    """Flush the order first, a duplicate order number surfaces here as IntegrityError."""
    session.add(order)
    await session.flush()

    for ln in lines:
        session.add(OrderItem(
            order_id=order.id,
            product_id=ln.product_id,
            variant_id=ln.variant_id,
            bundle_id=ln.bundle_id,
            variant_info=serialize_variant_info(ln.variant, ln.bundle_item_variants),
            quantity=ln.quantity,
            price=ln.unit_price,
            subtotal=ln.subtotal,
        ))
    await session.flush()
    return order


async def _decrement_stock(session, product_id: int, variant_id: Optional[int], quantity: int) -> int:
    if variant_id is not None:
        stmt = (
            update(ProductVariant)
            .where(ProductVariant.id == variant_id, ProductVariant.stock >= quantity)
            .values(stock=ProductVariant.stock - quantity)
        )
    else:
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity, updated_at=now())
        )
    res = await session.execute(stmt)
    return res.rowcount


async def adjust_stock(session, items: Iterable[Any]) -> StockAdjustment:
    """
    Decrement stock for each line with a conditional update, so stock never goes negative.
    Lines whose quantity exceeds the stock on hand are skipped, as are lines whose update
    failed; the caller records the skipped ones on the order.
    """
    result = StockAdjustment()
    for it in items:
        line = {"productId": it.product_id, "variantId": it.variant_id, "quantity": it.quantity}
        try:
            async with session.begin_nested():
                updated = await _decrement_stock(session, it.product_id, it.variant_id, it.quantity)
        except SQLAlchemyError as e:
            logger.error("stock.adjust.failed", extra={"product_id": it.product_id, "variant_id": it.variant_id,
                                                       "error": str(e)})
            result.skipped.append({**line, "reason": "error"})
            continue

        if updated == 0:
            logger.warning("stock.adjust.skipped", extra={"product_id": it.product_id, "variant_id": it.variant_id,
                                                          "quantity": it.quantity})
            result.skipped.append({**line, "reason": "insufficient_stock"})
        else:
            result.adjusted.append(line)
    return result


def append_history(order: Orders, entry: Dict[str, Any]) -> None:
    # JSON column is not mutation-tracked, assign a new list
    order.status_history = [*(order.status_history or []), entry]


def record_stock_adjustment(order: Orders, adjustment: StockAdjustment) -> None:
    """Keep the decremented lines on the order; a later cancel or refund gives back exactly these."""
    append_history(order, typed_entry(HistoryEntryType.STOCK_ADJUSTED, "Ürün stokları düşüldü",
                                      items=adjustment.adjusted))
    if not adjustment.skipped:
        return
    append_history(order, typed_entry(HistoryEntryType.STOCK_SHORTFALL,
                                      "Stok yetersiz, bazı ürünlerin stoğu düşülemedi",
                                      items=adjustment.skipped))
    order.stock_shortfall = True


async def _increment_stock(session, product_id: int, variant_id: Optional[int], quantity: int) -> int:
    if variant_id is not None:
        stmt = (
            update(ProductVariant)
            .where(ProductVariant.id == variant_id)
            .values(stock=ProductVariant.stock + quantity)
        )
    else:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity, updated_at=now())
        )
    res = await session.execute(stmt)
    return res.rowcount


async def restore_stock(session, order: Orders) -> List[Dict[str, Any]]:
    """
    Give back the stock this order took, at most once. Lines skipped for a shortfall
    were never decremented and stay untouched. The caller holds the order row lock
    and commits.
    """
    if find_history_entry(order.status_history, HistoryEntryType.STOCK_RESTORED) is not None:
        return []
    taken = find_history_entry(order.status_history, HistoryEntryType.STOCK_ADJUSTED)
    if taken is None:
        return []

    restored = []
    for line in taken.get("items") or []:
        updated = await _increment_stock(session, line["productId"], line.get("variantId"), line["quantity"])
        if updated == 0:
            logger.warning("stock.restore.missing", extra={"product_id": line["productId"],
                                                           "variant_id": line.get("variantId")})
            continue
        restored.append(line)

    append_history(order, typed_entry(HistoryEntryType.STOCK_RESTORED, "Ürün stokları iade edildi", items=restored))
    logger.info("stock.restored", extra={"order_number": order.order_number, "lines": len(restored)})
    return restored


async def order_by_number(session, order_number: str, with_items: bool = False,
                          for_update: bool = False) -> Optional[Orders]:
    stmt = select(Orders).where(Orders.order_number == order_number)
    if with_items:
        stmt = stmt.options(selectinload(Orders.items).selectinload(OrderItem.product))
    if for_update:
        stmt = stmt.with_for_update()
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def order_customer(session, order: Orders) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """(email, name, phone) of the order's owner."""
    if order.user_id is None:
        return None, None, None
    res = await session.execute(select(Users.email, Users.name, Users.phone).where(Users.id == order.user_id))
    row = res.one_or_none()
    if row is None:
        return None, None, None
    return row[0], row[1], row[2]


def serialize_order_item(item: OrderItem) -> Dict[str, Any]:
    product = item.product
    return {
        "id": item.id,
        "productId": product.public_id if product else None,
        "variantId": item.variant_id,
        "bundleId": item.bundle_id,
        "quantity": item.quantity,
        "price": to_number(item.price),
        "subtotal": to_number(item.subtotal),
        "variantInfo": parse_variant_info(item.variant_info),
        "product": {"id": product.public_id, "name": product.name, "slug": product.slug,
                    "thumbnail": product.thumbnail} if product else None,
    }


def serialize_order(order: Orders) -> Dict[str, Any]:
    snapshot = find_history_entry(order.status_history, HistoryEntryType.ADDRESS_SNAPSHOT)
    addresses = snapshot.get("addresses", {}) if snapshot else {}
    return {
        "id": str(order.public_id),
        "orderNumber": order.order_number,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "paymentMethod": order.payment_method,
        "currency": order.currency,
        "subtotal": to_number(order.subtotal),
        "shippingCost": to_number(order.shipping_cost),
        "discount": to_number(order.discount),
        "tax": to_number(order.tax),
        "total": to_number(order.total),
        "couponCode": order.coupon_code,
        "customerNote": order.customer_note,
        "trackingNumber": order.tracking_number,
        "carrierName": order.carrier_name,
        "invoiceUrl": order.invoice_url,
        "billingAddress": addresses.get("billingAddress"),
        "shippingAddress": addresses.get("shippingAddress"),
        "items": [serialize_order_item(it) for it in order.items],
        "statusHistory": order.status_history or [],
        "createdAt": iso(order.created_at),
        "paidAt": iso(order.paid_at),
        "shippedAt": iso(order.shipped_at),
        "deliveredAt": iso(order.delivered_at),
    }


async def list_user_orders(session, user_id: int) -> List[Dict[str, Any]]:
    stmt = (
        select(Orders)
        .where(Orders.user_id == user_id)
        .options(selectinload(Orders.items).selectinload(OrderItem.product))
        .order_by(Orders.created_at.desc(), Orders.id.desc())
    )
    res = await session.execute(stmt)
    return [serialize_order(o) for o in res.scalars().all()]


async def find_stock_shortfalls(session, limit: int = 100) -> List[Dict[str, Any]]:
    stmt = (
        select(Orders)
        .where(Orders.stock_shortfall.is_(True))
        .order_by(Orders.created_at.desc(), Orders.id.desc())
        .limit(limit)
    )
    res = await session.execute(stmt)
    report = []
    for order in res.scalars().all():
        entries = [e for e in order.status_history or [] if e.get("type") == HistoryEntryType.STOCK_SHORTFALL.value]
        report.append({
            "orderNumber": order.order_number,
            "status": order.status,
            "paymentStatus": order.payment_status,
            "createdAt": iso(order.created_at),
            "shortfalls": entries,
        })
    return report

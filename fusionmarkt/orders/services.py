from typing import Any, Dict, List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from fusionmarkt.auth.utils import generate_contract_access_token, tokens_match
from fusionmarkt.common.context import CheckoutContext
from fusionmarkt.common.custom_exceptions import (AccessDenied, CheckoutError, ContractsNotAcceptedError,
                                                  EmailRegisteredError, InvalidStatusTransition, OrderCreationFailed,
                                                  OrderNotFound)
from fusionmarkt.common.logging_setup import get_logger
from fusionmarkt.common.utils import now, to_number
from fusionmarkt.orders.contracts import (BuyerInfo, ContractLine, buyer_address_line,
                                          render_distance_sales_contract_html, render_terms_and_conditions_html)
from fusionmarkt.orders.models import AddressIn, ContractsIn, OrderCreateIn, StatusUpdateIn
from fusionmarkt.orders.repository import (adjust_stock, append_history, consume_coupon, coupon_by_code, insert_order,
                                           order_by_number, order_customer, price_order_items, record_stock_adjustment,
                                           restore_stock, save_address)
from fusionmarkt.orders.utils import (OrderTotals, build_address_snapshot, build_contract_acceptance,
                                      client_totals_mismatch, compute_order_totals, find_history_entry,
                                      generate_order_number, initial_status_history, map_payment_method, status_entry)
from fusionmarkt.schema.full_schema import (AddressType, HistoryEntryType, Orders, OrderStatus, PaymentMethod,
                                            PaymentStatus, UserRole, Users)
from fusionmarkt.user.repository import resolve_guest_account, set_guest_password
from fusionmarkt.user.utils import normalize_email_address

logger = get_logger("fusionmarkt.orders")

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

FINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})

STATUS_TIMESTAMPS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PROCESSING: "preparing_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

STATUS_NOTES = {
    OrderStatus.CONFIRMED: "Sipariş onaylandı",
    OrderStatus.PROCESSING: "Sipariş hazırlanıyor",
    OrderStatus.SHIPPED: "Sipariş kargoya verildi",
    OrderStatus.DELIVERED: "Sipariş teslim edildi",
    OrderStatus.CANCELLED: "Sipariş iptal edildi",
    OrderStatus.REFUNDED: "Sipariş iade edildi",
}


def require_contracts(contracts: Optional[ContractsIn]) -> ContractsIn:
    if not contracts or not contracts.terms_and_conditions or not contracts.distance_sales_contract:
        raise ContractsNotAcceptedError()
    return contracts


def validate_order_request(payload: OrderCreateIn) -> str:
    """Checks that run before anything is read or written. Returns the normalized buyer email."""
    if not payload.items:
        raise CheckoutError("Sepet boş")

    billing = payload.billing_address
    if billing is None:
        raise CheckoutError("Fatura adresi gerekli")
    if not billing.first_name or not billing.email:
        raise CheckoutError("Fatura adresi eksik bilgi içeriyor")

    try:
        email = normalize_email_address(billing.email)
    except ValueError:
        raise CheckoutError("Geçerli bir e-posta adresi girin")

    require_contracts(payload.contracts)
    return email


def _full_name(addr: AddressIn) -> str:
    return f"{addr.first_name or ''} {addr.last_name or ''}".strip()


def _render_contracts(payload: OrderCreateIn, email: str, totals: OrderTotals, order_number: str, at) -> Dict[str, Any]:
    billing = payload.billing_address
    buyer = BuyerInfo(
        full_name=_full_name(billing),
        email=email,
        address=buyer_address_line(billing.address_line1, billing.address_line2, billing.district, billing.city),
        phone=billing.phone or "",
        tc_kimlik_no=billing.tc_kimlik_no,
    )
    lines = [
        ContractLine(name=ln.name, quantity=ln.quantity, price=ln.unit_price,
                     variant_value=(ln.variant or {}).get("value"))
        for ln in totals.lines
    ]
    contracts = payload.contracts
    return build_contract_acceptance(
        terms_and_conditions=contracts.terms_and_conditions,
        distance_sales_contract=contracts.distance_sales_contract,
        newsletter=contracts.newsletter or payload.newsletter,
        terms_html=render_terms_and_conditions_html(buyer, order_number, at),
        distance_sales_html=render_distance_sales_contract_html(buyer, lines, totals.as_dict(), order_number, at),
        accepted_at=at,
    )


def set_password_url(settings, order_number: str, token: str) -> str:
    return f"{settings.SITE_URL.rstrip('/')}/orders/{order_number}/set-password?token={token}"


def admin_order_params(order: Orders, customer_name: str, customer_email: str, customer_phone: Optional[str],
                       shipping_city: Optional[str], items: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "order_number": order.order_number,
        "order_date": order.created_at,
        "customer_name": customer_name,
        "customer_email": customer_email,
        "customer_phone": customer_phone or "",
        "total": to_number(order.total),
        "item_count": sum(int(it["quantity"]) for it in items),
        "payment_method": order.payment_method,
        "shipping_city": shipping_city or "",
        "items": items,
    }


def notify_order_accepted(notifier, settings, order: Orders, customer_email: str, customer_name: str,
                          customer_phone: Optional[str], shipping_city: Optional[str],
                          items: List[Dict[str, Any]], is_guest: bool) -> None:
    """Customer + admin mails once an order is accepted: at creation for bank transfer, on payment for cards."""
    total = to_number(order.total)
    if order.payment_method == PaymentMethod.BANK_TRANSFER.value:
        notifier.dispatch("order_pending_payment", customer_email, order_number=order.order_number,
                          customer_name=customer_name, total=total)
    else:
        notifier.dispatch("payment_confirmed", customer_email, order_number=order.order_number,
                          customer_name=customer_name, total=total)

    if is_guest:
        notifier.dispatch("guest_account_created", customer_email, customer_name=customer_name,
                          set_password_url=set_password_url(settings, order.order_number, order.contract_access_token))

    notifier.dispatch("admin_new_order", settings.ADMIN_EMAIL,
                      **admin_order_params(order, customer_name, customer_email, customer_phone, shipping_city, items))


async def create_order(ctx: CheckoutContext, payload: OrderCreateIn) -> Dict[str, Any]:
    """
    Create an order in a single transaction.

    Prices, coupon discount and totals are recomputed from the catalog; client totals
    are only compared and logged. The order number is random and checked by the unique
    index: a collision rolls the unit back and retries it with a fresh number.
    Bank transfer orders decrement stock right away, card orders after the gateway confirms.
    """
    email = validate_order_request(payload)
    session = ctx.session
    settings = ctx.settings
    billing = payload.billing_address
    shipping = payload.shipping_address

    lines = await price_order_items(session, payload.items)
    coupon = await coupon_by_code(session, payload.coupon_code)
    at = now()
    totals = compute_order_totals(lines, coupon, settings, at)
    if payload.coupon_code and totals.coupon_id is None:
        logger.warning("order.coupon.ignored", extra={"coupon_code": payload.coupon_code})

    mismatch = client_totals_mismatch(payload.totals.model_dump() if payload.totals else None, totals)
    if mismatch:
        logger.warning("order.totals.client_mismatch", extra={"diff": mismatch})

    payment_method = map_payment_method(payload.payment_method)
    address_snapshot = build_address_snapshot(
        billing.model_dump(by_alias=True),
        shipping.model_dump(by_alias=True) if shipping else None,
    )
    # all ORM state is expired by a rollback, keep plain values for the retry loop
    coupon_id = totals.coupon_id
    user_id = ctx.user_id

    order = None
    guest_created = False
    max_attempts = max(1, settings.ORDER_NUMBER_MAX_ATTEMPTS)
    for attempt in range(1, max_attempts + 1):
        order_number = generate_order_number(at)
        try:
            buyer_id = user_id
            guest_created = False
            if buyer_id is None:
                resolution = await resolve_guest_account(session, email, billing.first_name, billing.last_name,
                                                         billing.phone, settings.BCRYPT_ROUNDS)
                if resolution.conflict:
                    raise EmailRegisteredError(userName=resolution.user_name)
                buyer_id = resolution.user_id
                guest_created = resolution.created

            billing_id = await save_address(session, buyer_id, billing, AddressType.BILLING)
            shipping_id = await save_address(session, buyer_id, shipping, AddressType.SHIPPING) if shipping else billing_id

            contract_acceptance = _render_contracts(payload, email, totals, order_number, at)
            order = Orders(
                order_number=order_number,
                user_id=buyer_id,
                status=OrderStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                payment_method=payment_method.value,
                subtotal=totals.subtotal,
                shipping_cost=totals.shipping,
                discount=totals.discount,
                tax=totals.tax,
                total=totals.total,
                coupon_id=coupon_id,
                coupon_code=totals.coupon_code,
                billing_address_id=billing_id,
                shipping_address_id=shipping_id,
                customer_note=payload.customer_note,
                contract_access_token=generate_contract_access_token(),
                status_history=initial_status_history(address_snapshot, contract_acceptance, at),
                created_at=at,
            )
            await insert_order(session, order, lines)

            if coupon_id is not None:
                await consume_coupon(session, coupon_id)

            if payment_method == PaymentMethod.BANK_TRANSFER:
                adjustment = await adjust_stock(session, lines)
                record_stock_adjustment(order, adjustment)

            await session.commit()
            break

        except IntegrityError as e:
            await session.rollback()
            logger.warning("order.number.collision", extra={"order_number": order_number, "attempt": attempt,
                                                            "error": str(e.orig)})
            if attempt == max_attempts:
                logger.error("order.create.failed", extra={"reason": "order_number_exhausted"})
                raise OrderCreationFailed()
        except CheckoutError:
            await session.rollback()
            raise
        except SQLAlchemyError:
            await session.rollback()
            logger.exception("order.create.failed", extra={"order_number": order_number})
            raise OrderCreationFailed()

    logger.info("order.create.success", extra={
        "order_number": order.order_number,
        "payment_method": order.payment_method,
        "total": str(order.total),
        "guest": guest_created,
    })

    if payment_method == PaymentMethod.BANK_TRANSFER:
        ship_to = shipping or billing
        notify_order_accepted(
            ctx.notifier, settings, order,
            customer_email=email,
            customer_name=_full_name(billing),
            customer_phone=billing.phone,
            shipping_city=ship_to.city,
            items=[{"name": ln.name, "quantity": ln.quantity, "price": to_number(ln.unit_price)} for ln in lines],
            is_guest=guest_created,
        )

    return {
        "success": True,
        "orderNumber": order.order_number,
        "orderId": str(order.public_id),
        "status": order.status,
        "paymentStatus": order.payment_status,
    }


async def load_order(session, order_number: str, with_items: bool = False, for_update: bool = False) -> Orders:
    order = await order_by_number(session, order_number, with_items=with_items, for_update=for_update)
    if order is None:
        raise OrderNotFound()
    return order


def _check_transition(current: str, new_status: OrderStatus) -> None:
    allowed = ALLOWED_TRANSITIONS.get(OrderStatus(current), set())
    if new_status not in allowed:
        raise InvalidStatusTransition(**{"from": current, "to": new_status.value})


def apply_status(order: Orders, new_status: OrderStatus, note: Optional[str] = None, at=None, **extra: Any) -> None:
    """Move ``order`` to ``new_status`` with its timestamp and a history entry. Does not validate."""
    at = at or now()
    order.status = new_status.value
    ts_field = STATUS_TIMESTAMPS.get(new_status)
    if ts_field:
        setattr(order, ts_field, at)
    order.updated_at = at
    append_history(order, status_entry(new_status.value, note or STATUS_NOTES.get(new_status, ""), at, **extra))


async def transition_order_status(ctx: CheckoutContext, order_number: str, update: StatusUpdateIn) -> Dict[str, Any]:
    session = ctx.session
    order = await load_order(session, order_number, for_update=True)
    previous = order.status
    new_status = update.status
    _check_transition(previous, new_status)
    closing = new_status in FINAL_STATUSES
    # captured card money only goes back through refund or cancel-payment
    if (closing and order.payment_method == PaymentMethod.CREDIT_CARD.value
            and order.payment_status == PaymentStatus.PAID.value):
        raise CheckoutError("Kartla ödenmiş sipariş için iade veya ödeme iptali kullanılmalı", status_code=409,
                            code="CARD_PAYMENT_CAPTURED", **{"from": previous, "to": new_status.value})

    at = now()
    if new_status == OrderStatus.SHIPPED:
        order.tracking_number = update.tracking_number or order.tracking_number
        order.carrier_name = update.carrier_name or order.carrier_name
    if closing:
        await restore_stock(session, order)

    apply_status(order, new_status, update.note, at)

    # staff confirming a bank transfer means the money arrived
    if (new_status == OrderStatus.CONFIRMED and order.payment_method == PaymentMethod.BANK_TRANSFER.value
            and order.payment_status == PaymentStatus.PENDING.value):
        order.payment_status = PaymentStatus.PAID.value
        order.paid_at = at
    if new_status == OrderStatus.REFUNDED and order.payment_status == PaymentStatus.PAID.value:
        order.payment_status = PaymentStatus.REFUNDED.value

    await session.commit()
    logger.info("order.status.changed", extra={"order_number": order_number, "from_status": previous,
                                               "to_status": order.status})

    email, name, _ = await order_customer(session, order)
    ctx.notifier.dispatch("order_status_changed", email, order_number=order.order_number, customer_name=name,
                          status=order.status, tracking_number=order.tracking_number,
                          carrier_name=order.carrier_name)
    return {
        "success": True,
        "orderNumber": order.order_number,
        "status": order.status,
        "paymentStatus": order.payment_status,
    }


async def record_invoice(ctx: CheckoutContext, order_number: str, invoice_url: str) -> Dict[str, Any]:
    session = ctx.session
    order = await load_order(session, order_number, for_update=True)
    order.invoice_url = invoice_url
    order.updated_at = now()
    await session.commit()
    logger.info("order.invoice.recorded", extra={"order_number": order_number})

    email, name, _ = await order_customer(session, order)
    ctx.notifier.dispatch("invoice_ready", email, order_number=order.order_number, customer_name=name,
                          invoice_url=invoice_url)
    return {"success": True, "orderNumber": order.order_number, "invoiceUrl": order.invoice_url}


async def get_order_contracts(ctx: CheckoutContext, order_number: str, token: Optional[str],
                              contract_type: str = "all") -> Dict[str, Any]:
    order = await load_order(ctx.session, order_number)

    is_owner = ctx.user_id is not None and ctx.user_id == order.user_id
    is_admin = ctx.user_role == UserRole.ADMIN.value
    if not (is_owner or is_admin or tokens_match(order.contract_access_token, token)):
        logger.warning("order.contracts.denied", extra={"order_number": order_number})
        raise AccessDenied("Bu siparişe erişim yetkiniz yok")

    entry = find_history_entry(order.status_history, HistoryEntryType.CONTRACT_ACCEPTANCE)
    if entry is None:
        raise OrderNotFound("Sözleşme bilgisi bulunamadı", code="CONTRACTS_NOT_FOUND")

    contracts = entry["contracts"]
    if contract_type == "terms":
        return {
            "type": "termsAndConditions",
            "accepted": contracts.get("termsAndConditions"),
            "acceptedAt": contracts.get("acceptedAt"),
            "html": contracts.get("termsAndConditionsHTML"),
        }
    if contract_type == "distance":
        return {
            "type": "distanceSalesContract",
            "accepted": contracts.get("distanceSalesContract"),
            "acceptedAt": contracts.get("acceptedAt"),
            "html": contracts.get("distanceSalesContractHTML"),
        }
    return {
        "orderNumber": order.order_number,
        "acceptedAt": contracts.get("acceptedAt"),
        "contracts": {
            "termsAndConditions": {"accepted": contracts.get("termsAndConditions"),
                                   "html": contracts.get("termsAndConditionsHTML")},
            "distanceSalesContract": {"accepted": contracts.get("distanceSalesContract"),
                                      "html": contracts.get("distanceSalesContractHTML")},
            "newsletter": contracts.get("newsletter"),
        },
    }


async def set_order_password(ctx: CheckoutContext, order_number: str, token: str, password: str) -> Dict[str, Any]:
    session = ctx.session
    if not password or len(password) < ctx.settings.MIN_PASSWORD_LENGTH:
        raise CheckoutError(f"Şifre en az {ctx.settings.MIN_PASSWORD_LENGTH} karakter olmalıdır")

    order = await load_order(session, order_number)
    if not tokens_match(order.contract_access_token, token):
        logger.warning("guest.password.bad_token", extra={"order_number": order_number})
        raise AccessDenied()
    if order.user_id is None:
        raise OrderNotFound("Kullanıcı bulunamadı", code="USER_NOT_FOUND")

    user = await session.get(Users, order.user_id)
    if user is None:
        raise OrderNotFound("Kullanıcı bulunamadı", code="USER_NOT_FOUND")

    updated = await set_guest_password(session, user.id, password, ctx.settings.BCRYPT_ROUNDS)
    if not updated:
        await session.rollback()
        raise CheckoutError("Bu hesap için şifre zaten belirlenmiş", status_code=409, code="PASSWORD_ALREADY_SET")

    await session.commit()
    logger.info("guest.password.set", extra={"user_id": user.id})
    return {"success": True, "message": "Şifreniz başarıyla oluşturuldu", "email": user.email}


async def accept_paid_card_order(ctx: CheckoutContext, order: Orders) -> None:
    """Deferred work of a card order once the gateway confirmed: stock, then mails after commit."""
    adjustment = await adjust_stock(ctx.session, order.items)
    record_stock_adjustment(order, adjustment)
    await ctx.session.commit()

    snapshot = find_history_entry(order.status_history, HistoryEntryType.ADDRESS_SNAPSHOT) or {}
    addresses = snapshot.get("addresses", {})
    ship_to = addresses.get("shippingAddress") or {}
    billing = addresses.get("billingAddress") or {}

    email, name, phone = await order_customer(ctx.session, order)
    user = await ctx.session.get(Users, order.user_id) if order.user_id is not None else None
    notify_order_accepted(
        ctx.notifier, ctx.settings, order,
        customer_email=email,
        customer_name=billing.get("fullName") or name or "",
        customer_phone=billing.get("phone") or phone,
        shipping_city=ship_to.get("city"),
        items=[{"name": it.product.name if it.product else None, "quantity": it.quantity,
                "price": to_number(it.price)} for it in order.items],
        is_guest=bool(user and user.is_guest),
    )

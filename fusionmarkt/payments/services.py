from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode
from sqlalchemy.exc import SQLAlchemyError
from fusionmarkt.common.context import CheckoutContext
from fusionmarkt.common.custom_exceptions import (CheckoutError, PaymentGatewayError, PaymentGatewayNotConfigured,
                                                  PaymentGatewayUnavailable)
from fusionmarkt.common.utils import now, to_money, to_number
from fusionmarkt.orders.repository import append_history, order_by_number, restore_stock
from fusionmarkt.orders.services import (ALLOWED_TRANSITIONS, FINAL_STATUSES, accept_paid_card_order, apply_status,
                                         load_order)
from fusionmarkt.orders.utils import find_history_entry, status_entry, typed_entry
from fusionmarkt.payments.constants import (PAYMENT_FAILED_DEFAULT, PAYMENT_INIT_DEFAULT, PAYMENT_PENDING_MESSAGE,
                                            logger, md_status_message, payment_error_message)
from fusionmarkt.payments.iyzico import decode_html_content, format_price
from fusionmarkt.payments.models import InstallmentIn, PaymentInitIn
from fusionmarkt.payments.utils import build_threeds_request, item_transactions, plan_refund
from fusionmarkt.schema.full_schema import (HistoryEntryType, Orders, OrderStatus, PaymentMethod, PaymentStatus,
                                            Users)

UNEXPECTED_ERROR = "Beklenmeyen bir hata oluştu"
CLOSED_ORDER_PAID = "Sipariş iptal edilmişti, ödeme iade edilmeli"
CLOSED_ORDER_REDIRECT = "Siparişiniz iptal edildiği için ödemeniz iade edilecektir"


def callback_url(settings) -> str:
    return f"{settings.SITE_URL.rstrip('/')}/api/payment/callback"


def failed_redirect(settings, message: str, order_number: Optional[str] = None) -> str:
    params = {"status": "failed", "error": message}
    if order_number:
        params["orderNumber"] = order_number
    return f"{settings.SITE_URL.rstrip('/')}/checkout/result?{urlencode(params)}"


def pending_redirect(settings, order_number: str) -> str:
    params = {"status": "pending", "orderNumber": order_number, "message": PAYMENT_PENDING_MESSAGE}
    return f"{settings.SITE_URL.rstrip('/')}/checkout/result?{urlencode(params)}"


def success_redirect(settings, order_number: str, payment_id: Optional[str]) -> str:
    params = {"orderNumber": order_number}
    if payment_id:
        params["paymentId"] = payment_id
    return f"{settings.SITE_URL.rstrip('/')}/order-confirmation?{urlencode(params)}"


def checkout_redirect(settings) -> str:
    return f"{settings.SITE_URL.rstrip('/')}/checkout"


def _require_card_order(order: Orders) -> None:
    if order.payment_method != PaymentMethod.CREDIT_CARD.value:
        raise CheckoutError("Bu sipariş kartla ödenemez", code="INVALID_PAYMENT_METHOD")
    if order.payment_status == PaymentStatus.PAID.value:
        raise CheckoutError("Bu siparişin ödemesi zaten alınmış", status_code=409, code="ORDER_ALREADY_PAID")
    # an earlier attempt may still have charged the card, wait for reconciliation
    if order.payment_status == PaymentStatus.UNKNOWN.value:
        raise CheckoutError("Önceki ödemenin sonucu bekleniyor", status_code=409, code="PAYMENT_STATUS_UNKNOWN")
    if order.status != OrderStatus.PENDING.value:
        raise CheckoutError("Bu sipariş için ödeme yapılamaz", status_code=409, code="ORDER_NOT_PAYABLE")


async def initialize_payment(ctx: CheckoutContext, payload: PaymentInitIn) -> Dict[str, Any]:
    """Start 3-D Secure for a pending card order; the response carries the bank's challenge page."""
    gateway = ctx.gateway
    if not gateway.enabled:
        raise PaymentGatewayNotConfigured()

    session = ctx.session
    order = await load_order(session, payload.order_number, with_items=True)
    _require_card_order(order)

    snapshot = find_history_entry(order.status_history, HistoryEntryType.ADDRESS_SNAPSHOT) or {}
    user = await session.get(Users, order.user_id) if order.user_id is not None else None
    request = build_threeds_request(order, payload, snapshot.get("addresses", {}), user,
                                    ctx.client_ip, callback_url(ctx.settings))

    result = await gateway.threeds_initialize(request)
    if not result.succeeded:
        logger.warning("payment.initialize.failed", extra={"order_number": order.order_number,
                                                           "error_code": result.error_code})
        raise PaymentGatewayError(payment_error_message(result.error_code, PAYMENT_INIT_DEFAULT),
                                  status_code=400, errorCode=result.error_code)

    order.iyzico_conversation_id = order.order_number
    order.updated_at = now()
    await session.commit()
    logger.info("payment.initialize.success", extra={"order_number": order.order_number,
                                                     "installment": payload.installment})
    return {
        "success": True,
        "htmlContent": decode_html_content(result.get("threeDSHtmlContent")),
        "conversationId": order.order_number,
        "orderNumber": order.order_number,
    }


async def _mark_failed(ctx: CheckoutContext, order: Orders, message: str, **extra: Any) -> None:
    order.payment_status = PaymentStatus.FAILED.value
    order.updated_at = now()
    append_history(order, typed_entry(HistoryEntryType.PAYMENT_FAILED, f"Ödeme başarısız: {message}", **extra))
    await ctx.session.commit()
    logger.warning("payment.failed", extra={"order_number": order.order_number, "reason": message})


async def _mark_unknown(ctx: CheckoutContext, order: Orders, payment_id: str) -> None:
    order.payment_status = PaymentStatus.UNKNOWN.value
    order.iyzico_payment_id = payment_id
    order.updated_at = now()
    append_history(order, typed_entry(HistoryEntryType.PAYMENT_UNKNOWN,
                                      "Ödeme sonucu alınamadı, mutabakat bekleniyor", paymentId=payment_id))
    await ctx.session.commit()
    logger.error("payment.unknown", extra={"order_number": order.order_number, "payment_id": payment_id})


async def _mark_paid(ctx: CheckoutContext, order: Orders, result, payment_id: str) -> bool:
    """Record the captured payment. False when the order was already closed and the money must go back."""
    at = now()
    gateway_payment_id = result.get("paymentId") or payment_id
    order.payment_status = PaymentStatus.PAID.value
    order.paid_at = at
    order.iyzico_payment_id = gateway_payment_id
    order.iyzico_conversation_id = order.order_number
    order.iyzico_payment_transactions = item_transactions(result)
    note = f"Ödeme onaylandı. iyzico Payment ID: {gateway_payment_id}"

    if OrderStatus(order.status) in FINAL_STATUSES:
        # closed while the shopper was at the bank: no stock, no mails
        order.updated_at = at
        append_history(order, typed_entry(HistoryEntryType.REFUND_REQUIRED, f"{note}. {CLOSED_ORDER_PAID}", at,
                                          paymentId=gateway_payment_id, orderStatus=order.status))
        await ctx.session.commit()
        logger.error("payment.paid.closed_order", extra={"order_number": order.order_number,
                                                         "order_status": order.status,
                                                         "payment_id": gateway_payment_id})
        return False

    if order.status == OrderStatus.PENDING.value:
        apply_status(order, OrderStatus.PROCESSING, note, at)
    else:
        # paid after staff already moved the order, keep its status
        logger.warning("payment.paid.unexpected_status", extra={"order_number": order.order_number,
                                                                "order_status": order.status})
        append_history(order, status_entry(order.status, note, at))

    logger.info("payment.success", extra={"order_number": order.order_number, "payment_id": gateway_payment_id,
                                          "paid_price": result.get("paidPrice")})
    await accept_paid_card_order(ctx, order)
    return True


async def _confirm_with_gateway(ctx: CheckoutContext, order: Orders, payment_id: str,
                                conversation_data: Optional[str]):
    """
    Finish the payment. When the auth call goes unanswered the payment detail is
    looked up once; None means the outcome is still unknown.
    """
    try:
        return await ctx.gateway.threeds_payment(order.order_number, payment_id, conversation_data)
    except PaymentGatewayUnavailable:
        logger.warning("payment.confirm.unanswered", extra={"order_number": order.order_number,
                                                            "payment_id": payment_id})

    try:
        detail = await ctx.gateway.retrieve_payment(payment_id=payment_id, conversation_id=order.order_number)
    except PaymentGatewayUnavailable:
        return None
    if detail.succeeded and detail.get("paymentStatus") == "SUCCESS":
        return detail
    return None


async def handle_callback(ctx: CheckoutContext, form: Dict[str, Any]) -> str:
    """
    Gateway's 3-D Secure return. Always ends in a redirect URL for the shopper's browser.
    A repeated callback for a paid order only redirects again.
    """
    settings = ctx.settings
    status = form.get("status")
    payment_id = form.get("paymentId")
    order_number = form.get("conversationId")
    conversation_data = form.get("conversationData")
    md_status = form.get("mdStatus")

    logger.info("payment.callback.received", extra={"order_number": order_number, "gateway_status": status,
                                                    "md_status": md_status})
    if not order_number:
        return failed_redirect(settings, UNEXPECTED_ERROR)

    session = ctx.session
    try:
        order = await order_by_number(session, order_number, with_items=True, for_update=True)
        if order is None:
            logger.warning("payment.callback.unknown_order", extra={"order_number": order_number})
            return failed_redirect(settings, "Sipariş bulunamadı", order_number)

        if order.payment_status == PaymentStatus.PAID.value:
            if OrderStatus(order.status) in FINAL_STATUSES:
                return failed_redirect(settings, CLOSED_ORDER_REDIRECT, order_number)
            return success_redirect(settings, order_number, order.iyzico_payment_id)

        if status != "success" or not payment_id:
            message = md_status_message(md_status)
            await _mark_failed(ctx, order, message, mdStatus=md_status)
            return failed_redirect(settings, message, order_number)

        try:
            result = await _confirm_with_gateway(ctx, order, payment_id, conversation_data)
        except PaymentGatewayError as e:
            logger.error("payment.confirm.error", extra={"order_number": order_number, "code": e.code})
            return failed_redirect(settings, e.error, order_number)

        if result is None:
            await _mark_unknown(ctx, order, payment_id)
            return pending_redirect(settings, order_number)

        if result.succeeded:
            if not await _mark_paid(ctx, order, result, payment_id):
                return failed_redirect(settings, CLOSED_ORDER_REDIRECT, order_number)
            return success_redirect(settings, order_number, order.iyzico_payment_id)

        message = payment_error_message(result.error_code, result.error_message or PAYMENT_FAILED_DEFAULT)
        await _mark_failed(ctx, order, message, errorCode=result.error_code)
        return failed_redirect(settings, message, order_number)

    except SQLAlchemyError:
        await session.rollback()
        logger.exception("payment.callback.db_error", extra={"order_number": order_number})
        return failed_redirect(settings, UNEXPECTED_ERROR, order_number)


async def installments(ctx: CheckoutContext, payload: InstallmentIn) -> Dict[str, Any]:
    result = await ctx.gateway.installment_info(payload.bin_number, payload.price)
    if not result.succeeded:
        raise PaymentGatewayError(payment_error_message(result.error_code, "Taksit bilgisi alınamadı"),
                                  status_code=400, errorCode=result.error_code)
    return {
        "success": True,
        "conversationId": result.get("conversationId"),
        "installmentDetails": result.get("installmentDetails") or [],
    }


def _require_paid_card_order(order: Orders) -> None:
    if order.payment_method != PaymentMethod.CREDIT_CARD.value or order.payment_status != PaymentStatus.PAID.value:
        raise CheckoutError("Sipariş için alınmış bir kart ödemesi yok", status_code=409, code="ORDER_NOT_PAID")


async def refund_order(ctx: CheckoutContext, order_number: str, amount: Optional[Decimal] = None,
                       reason: Optional[str] = None) -> Dict[str, Any]:
    """
    Refund a paid card order, fully or partially, transaction by transaction.
    A full refund moves the order to REFUNDED and gives its stock back; a partial one
    is only recorded. A cancelled order that was paid afterwards keeps its status.
    """
    session = ctx.session
    order = await load_order(session, order_number, for_update=True)
    _require_paid_card_order(order)
    closed = OrderStatus(order.status) in FINAL_STATUSES

    transactions = order.iyzico_payment_transactions or []
    paid_total = sum((to_money(tx.get("paidPrice") or tx.get("price") or 0) for tx in transactions), Decimal("0"))
    full = amount is None or to_money(amount) >= paid_total
    if amount is not None and to_money(amount) > paid_total:
        raise CheckoutError("İade tutarı ödenen tutarı aşamaz", code="REFUND_AMOUNT_TOO_HIGH")
    if (full and not closed
            and OrderStatus.REFUNDED not in ALLOWED_TRANSITIONS.get(OrderStatus(order.status), set())):
        raise CheckoutError("Sipariş bu durumda iade edilemez", status_code=409, code="INVALID_STATUS_TRANSITION")

    plan = plan_refund(transactions, None if full else amount)
    if not plan:
        raise CheckoutError("İade edilecek ödeme işlemi bulunamadı", status_code=409, code="NO_REFUNDABLE_TRANSACTION")

    refunded = Decimal("0")
    for step in plan:
        result = await ctx.gateway.refund(order.order_number, step["paymentTransactionId"], step["price"],
                                          ctx.client_ip, order.currency)
        if not result.succeeded:
            logger.error("payment.refund.failed", extra={"order_number": order_number,
                                                         "error_code": result.error_code,
                                                         "refunded_so_far": str(refunded)})
            if refunded > 0:
                append_history(order, status_entry(order.status, f"Kısmi iade yapıldı: {format_price(refunded)} TRY",
                                                    refundedAmount=format_price(refunded)))
                await session.commit()
            raise PaymentGatewayError(payment_error_message(result.error_code, "İade işlemi başarısız"),
                                      status_code=400, errorCode=result.error_code)
        refunded += step["price"]

    note = reason or ("Ödeme iade edildi" if full else f"Kısmi iade yapıldı: {format_price(refunded)} TRY")
    if full:
        order.payment_status = PaymentStatus.REFUNDED.value
        await restore_stock(session, order)
    if full and not closed:
        apply_status(order, OrderStatus.REFUNDED, note, refundedAmount=format_price(refunded))
    else:
        order.updated_at = now()
        append_history(order, status_entry(order.status, note, refundedAmount=format_price(refunded)))
    await session.commit()
    logger.info("payment.refund.success", extra={"order_number": order_number, "amount": str(refunded),
                                                 "full": full})
    return {
        "success": True,
        "orderNumber": order.order_number,
        "refundedAmount": to_number(refunded),
        "status": order.status,
        "paymentStatus": order.payment_status,
    }


async def cancel_order_payment(ctx: CheckoutContext, order_number: str, reason: Optional[str] = None) -> Dict[str, Any]:
    """Void a same-day card payment before settlement and cancel the order."""
    session = ctx.session
    order = await load_order(session, order_number, for_update=True)
    _require_paid_card_order(order)
    if OrderStatus.CANCELLED not in ALLOWED_TRANSITIONS.get(OrderStatus(order.status), set()):
        raise CheckoutError("Sipariş bu durumda iptal edilemez", status_code=409, code="INVALID_STATUS_TRANSITION")
    if not order.iyzico_payment_id:
        raise CheckoutError("Ödeme kaydı bulunamadı", status_code=409, code="NO_PAYMENT_ID")

    result = await ctx.gateway.cancel(order.order_number, order.iyzico_payment_id, ctx.client_ip)
    if not result.succeeded:
        logger.error("payment.cancel.failed", extra={"order_number": order_number, "error_code": result.error_code})
        raise PaymentGatewayError(payment_error_message(result.error_code, "Ödeme iptal edilemedi"),
                                  status_code=400, errorCode=result.error_code)

    order.payment_status = PaymentStatus.REFUNDED.value
    await restore_stock(session, order)
    apply_status(order, OrderStatus.CANCELLED, reason or "Ödeme iptal edildi, sipariş iptal edildi")
    await session.commit()
    logger.info("payment.cancel.success", extra={"order_number": order_number})
    return {
        "success": True,
        "orderNumber": order.order_number,
        "status": order.status,
        "paymentStatus": order.payment_status,
    }

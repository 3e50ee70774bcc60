from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import ValidationError
from fusionmarkt.common.context import CheckoutContext
from fusionmarkt.common.custom_exceptions import InvalidOrderRequest
from fusionmarkt.common.responses import json_response
from fusionmarkt.orders.dependencies import get_admin_context, get_checkout_context, get_user_context
from fusionmarkt.orders.models import InvoiceIn, OrderCreateIn, RefundIn, SetPasswordIn, StatusUpdateIn
from fusionmarkt.orders.repository import find_stock_shortfalls, list_user_orders
from fusionmarkt.orders.services import (create_order, get_order_contracts, record_invoice, set_order_password,
                                         transition_order_status)
from fusionmarkt.payments.services import cancel_order_payment, refund_order
from fusionmarkt.rate_limiting.dependencies import rate_limit_dependency
from fusionmarkt.common.logging_setup import get_logger

logger = get_logger("fusionmarkt.orders")

orders_router = APIRouter()


async def _parse_body(request: Request, model):
    # malformed json and schema errors share the checkout 400 body instead of the 422 envelope
    try:
        raw = await request.json()
        return model.model_validate(raw)
    except (ValueError, ValidationError) as e:
        logger.info("order.request.invalid", extra={"path": request.url.path, "error": str(e)[:200]})
        raise InvalidOrderRequest()


# rate limit runs before the body is even read
@orders_router.post("/orders", dependencies=[Depends(rate_limit_dependency("order"))])
async def place_order(request: Request, ctx: CheckoutContext = Depends(get_checkout_context)):
    payload = await _parse_body(request, OrderCreateIn)
    res = await create_order(ctx, payload)
    return json_response(res, status_code=status.HTTP_201_CREATED)


@orders_router.get("/orders")
async def my_orders(ctx: CheckoutContext = Depends(get_user_context)):
    orders = await list_user_orders(ctx.session, ctx.user_id)
    return json_response({"orders": orders})


@orders_router.get("/orders/{order_number}/contracts")
async def order_contracts(order_number: str,
                          token: Optional[str] = Query(default=None),
                          contract_type: str = Query(default="all", alias="type", pattern="^(terms|distance|all)$"),
                          ctx: CheckoutContext = Depends(get_checkout_context)):
    res = await get_order_contracts(ctx, order_number, token, contract_type)
    return json_response(res)


@orders_router.post("/orders/{order_number}/set-password",
                    dependencies=[Depends(rate_limit_dependency("password_reset"))])
async def order_set_password(order_number: str, request: Request,
                             ctx: CheckoutContext = Depends(get_checkout_context)):
    payload = await _parse_body(request, SetPasswordIn)
    res = await set_order_password(ctx, order_number, payload.token, payload.password)
    return json_response(res)


#--------------------------------------------------------------------------------------------------------

orders_admin_router = APIRouter()


@orders_admin_router.get("/stock-shortfalls")
async def stock_shortfalls(limit: int = Query(default=100, ge=1, le=500),
                           ctx: CheckoutContext = Depends(get_admin_context)):
    report = await find_stock_shortfalls(ctx.session, limit)
    return json_response({"orders": report, "count": len(report)})


@orders_admin_router.patch("/{order_number}/status")
async def update_order_status(order_number: str, payload: StatusUpdateIn,
                              ctx: CheckoutContext = Depends(get_admin_context)):
    res = await transition_order_status(ctx, order_number, payload)
    return json_response(res)


@orders_admin_router.post("/{order_number}/invoice")
async def attach_invoice(order_number: str, payload: InvoiceIn,
                         ctx: CheckoutContext = Depends(get_admin_context)):
    res = await record_invoice(ctx, order_number, payload.invoice_url)
    return json_response(res)


@orders_admin_router.post("/{order_number}/refund")
async def refund_payment(order_number: str, payload: RefundIn,
                         ctx: CheckoutContext = Depends(get_admin_context)):
    res = await refund_order(ctx, order_number, payload.amount, payload.reason)
    return json_response(res)


@orders_admin_router.post("/{order_number}/cancel-payment")
async def cancel_payment(order_number: str, payload: Optional[RefundIn] = None,
                         ctx: CheckoutContext = Depends(get_admin_context)):
    res = await cancel_order_payment(ctx, order_number, payload.reason if payload else None)
    return json_response(res)

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse
from fusionmarkt.common.context import CheckoutContext
from fusionmarkt.common.responses import json_response
from fusionmarkt.orders.dependencies import get_checkout_context
from fusionmarkt.payments.models import InstallmentIn, PaymentInitIn
from fusionmarkt.payments.services import checkout_redirect, handle_callback, initialize_payment, installments
from fusionmarkt.rate_limiting.dependencies import rate_limit_dependency

payments_router = APIRouter()


@payments_router.post("/initialize", dependencies=[Depends(rate_limit_dependency("order"))])
async def payment_initialize(payload: PaymentInitIn, ctx: CheckoutContext = Depends(get_checkout_context)):
    res = await initialize_payment(ctx, payload)
    return json_response(res)


# iyzico posts the 3-D Secure result as a form from the shopper's browser
@payments_router.post("/callback")
async def payment_callback(request: Request, ctx: CheckoutContext = Depends(get_checkout_context)):
    form = await request.form()
    url = await handle_callback(ctx, dict(form))
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


@payments_router.get("/callback")
async def payment_callback_get(request: Request):
    return RedirectResponse(checkout_redirect(request.app.state.settings), status_code=status.HTTP_303_SEE_OTHER)


@payments_router.post("/installments", dependencies=[Depends(rate_limit_dependency("api"))])
async def payment_installments(payload: InstallmentIn, ctx: CheckoutContext = Depends(get_checkout_context)):
    res = await installments(ctx, payload)
    return json_response(res)


from typing import Any, Dict, Optional
from fastapi import FastAPI, HTTPException, Request,status
from fastapi.exceptions import RequestValidationError
from fusionmarkt.common.logging_setup import get_logger
from fusionmarkt.common.responses import envelope, json_response

logger = get_logger("fusionmarkt.errors")


class CheckoutError(Exception):
    """
    Business error rendered as ``{"error": <message>, "code": <code>, ...extra}``.
    Messages are customer facing (Turkish), codes are for programmatic handling.
    """
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: Optional[str] = None
    message: str = "İstek işlenemedi"

    def __init__(self, error: Optional[str] = None, *, code: Optional[str] = None,
                 status_code: Optional[int] = None, headers: Optional[Dict[str, str]] = None, **extra: Any):
        self.error = error or self.message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers
        self.extra = extra
        super().__init__(self.error)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.code:
            body["code"] = self.code
        body.update(self.extra)
        return body


class InvalidOrderRequest(CheckoutError):
    message = "Geçersiz istek verisi"


class ContractsNotAcceptedError(CheckoutError):
    code = "CONTRACTS_NOT_ACCEPTED"
    message = ("Sipariş oluşturabilmek için Kullanıcı Sözleşmesi ve Mesafeli Satış "
               "Sözleşmesi'ni onaylamanız gerekmektedir.")


class EmailRegisteredError(CheckoutError):
    status_code = status.HTTP_409_CONFLICT
    code = "EMAIL_REGISTERED"
    message = "Bu e-posta adresi kayıtlı bir hesaba ait. Lütfen giriş yaparak devam edin."


class RateLimitedError(CheckoutError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Çok fazla sipariş denemesi. Lütfen biraz bekleyin."

    def __init__(self, retry_after: int, error: Optional[str] = None):
        super().__init__(error, headers={"Retry-After": str(retry_after)}, retryAfter=retry_after)


class OrderNotFound(CheckoutError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "ORDER_NOT_FOUND"
    message = "Sipariş bulunamadı"


class AccessDenied(CheckoutError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ACCESS_DENIED"
    message = "Bu işlem için yetkiniz yok"


class InvalidStatusTransition(CheckoutError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATUS_TRANSITION"
    message = "Sipariş durumu bu duruma geçirilemez"


class OrderCreationFailed(CheckoutError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Sipariş oluşturulamadı"


class PaymentGatewayError(CheckoutError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "GATEWAY_ERROR"
    message = "Ödeme sağlayıcısı hatası"


class PaymentGatewayNotConfigured(PaymentGatewayError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "GATEWAY_NOT_CONFIGURED"
    message = "Ödeme sistemi yapılandırılmamış"


class PaymentGatewayUnavailable(PaymentGatewayError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "GATEWAY_UNAVAILABLE"
    message = "Ödeme sağlayıcısına şu anda ulaşılamıyor"


class BasketTotalMismatch(PaymentGatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "BASKET_TOTAL_MISMATCH"
    message = "Sepet toplamı sipariş tutarı ile uyuşmuyor"


async def checkout_error_handler(request: Request, exc: CheckoutError):
    log = logger.error if exc.status_code >= 500 else logger.info
    log("checkout.error", extra={"path": request.url.path, "status_code": exc.status_code, "code": exc.code})
    return json_response(exc.to_body(), status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("request.validation_failed", extra={"path": request.url.path, "errors": exc.errors()})
    return json_response(envelope(code="UNPROCESSABLE_ENTITY", message="invalid request"),
                         status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):
    return json_response(envelope(code=f"HTTP_{exc.status_code}", message=exc.detail),
                         status_code=exc.status_code, headers=exc.headers)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unexpected.exception", extra={"path": request.url.path, "method": request.method}, exc_info=exc)
    return json_response(envelope(code="SERVER_ERROR", message="Internal Server Error"),
                         status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


EXCEPTION_HANDLERS = (
    (CheckoutError, checkout_error_handler),
    (RequestValidationError, validation_exception_handler),
    (HTTPException, http_exception_handler),
    (Exception, unhandled_exception_handler),
)


def register_all_exceptions(app: FastAPI):
    for exc_class, handler in EXCEPTION_HANDLERS:
        app.add_exception_handler(exc_class, handler)

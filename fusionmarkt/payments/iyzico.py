
import base64
import binascii
import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional
import httpx
import orjson
from fusionmarkt.common.circuit_breaker import CircuitBreaker, CircuitOpenError
from fusionmarkt.common.custom_exceptions import BasketTotalMismatch, PaymentGatewayNotConfigured, PaymentGatewayUnavailable
from fusionmarkt.common.utils import to_money
from fusionmarkt.payments.constants import ENDPOINTS, logger

TRANSIENT_EXCEPTIONS = (httpx.TimeoutException, httpx.TransportError)


def format_price(price: Any) -> str:
    """Dotted two-decimal string the gateway expects, e.g. ``"99.90"``."""
    return f"{to_money(price):.2f}"


def validate_basket_total(basket_items: List[Dict[str, Any]], expected_total: Any) -> None:
    """Basket line prices must add up to the charged price to the cent."""
    basket_sum = sum((Decimal(item["price"]) for item in basket_items), Decimal("0"))
    if to_money(basket_sum) != to_money(expected_total):
        raise BasketTotalMismatch(basketTotal=format_price(basket_sum), expectedTotal=format_price(expected_total))


def decode_html_content(encoded: Optional[str]) -> Optional[str]:
    if not encoded:
        return None
    try:
        return base64.b64decode(encoded).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        # some sandbox responses are already plain html
        return encoded


@dataclass
class IyzicoResult:
    status: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def get(self, key: str, default: Any = None) -> Any:
        return self.raw.get(key, default)

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "IyzicoResult":
        code = data.get("errorCode")
        return cls(
            status=data.get("status", "failure"),
            error_code=str(code) if code is not None else None,
            error_message=data.get("errorMessage"),
            raw=data,
        )


class IyzicoClient:
    """
    iyzico REST client (IYZWSv2 signed requests).

    Every call except ``installment_info`` raises PaymentGatewayNotConfigured without
    credentials. Transport errors, timeouts and 5xx raise PaymentGatewayUnavailable: the
    outcome of such a call is unknown and must not be treated as success or failure.
    """

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None,
                 breaker: Optional[CircuitBreaker] = None):
        self.api_key = settings.IYZICO_API_KEY
        self.secret_key = settings.IYZICO_SECRET_KEY
        self.base_url = settings.IYZICO_BASE_URL.rstrip("/")
        self.timeout = settings.IYZICO_TIMEOUT_SECONDS
        self._transport = transport
        self.breaker = breaker or CircuitBreaker(
            name="iyzico",
            failure_threshold=settings.GATEWAY_FAILURE_THRESHOLD,
            recovery_timeout=settings.GATEWAY_RECOVERY_SECONDS,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.secret_key)

    def _auth_headers(self, uri_path: str, body: str) -> Dict[str, str]:
        random_key = f"{int(time.time() * 1000)}{secrets.token_hex(4)}"
        signature = hmac.new(self.secret_key.encode(), (random_key + uri_path + body).encode(),
                             hashlib.sha256).hexdigest()
        auth_string = f"apiKey:{self.api_key}&randomKey:{random_key}&signature:{signature}"
        return {
            "Authorization": "IYZWSv2 " + base64.b64encode(auth_string.encode()).decode(),
            "x-iyzi-rnd": random_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _post(self, operation: str, payload: Dict[str, Any]) -> IyzicoResult:
        if not self.enabled:
            raise PaymentGatewayNotConfigured()

        try:
            await self.breaker.before_call()
        except CircuitOpenError:
            logger.warning("iyzico.circuit_open", extra={"operation": operation})
            raise PaymentGatewayUnavailable()

        uri_path = ENDPOINTS[operation]
        body = orjson.dumps(payload).decode()
        conversation_id = payload.get("conversationId")
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                         transport=self._transport) as client:
                resp = await client.post(uri_path, content=body, headers=self._auth_headers(uri_path, body))
        except TRANSIENT_EXCEPTIONS as e:
            await self.breaker.after_call(False)
            logger.error("iyzico.transport_error", extra={"operation": operation, "conversation_id": conversation_id,
                                                          "error": repr(e)})
            raise PaymentGatewayUnavailable()

        if resp.status_code >= 500:
            await self.breaker.after_call(False)
            logger.error("iyzico.server_error", extra={"operation": operation, "conversation_id": conversation_id,
                                                       "status_code": resp.status_code})
            raise PaymentGatewayUnavailable()

        await self.breaker.after_call(True)
        try:
            data = resp.json()
        except ValueError:
            logger.error("iyzico.bad_response", extra={"operation": operation, "status_code": resp.status_code})
            raise PaymentGatewayUnavailable()

        result = IyzicoResult.from_response(data)
        logger.info("iyzico.response", extra={"operation": operation, "conversation_id": conversation_id,
                                              "gateway_status": result.status, "error_code": result.error_code})
        return result

    async def threeds_initialize(self, request: Dict[str, Any]) -> IyzicoResult:
        validate_basket_total(request["basketItems"], request["price"])
        return await self._post("threeds_initialize", request)

    async def threeds_payment(self, conversation_id: str, payment_id: str,
                              conversation_data: Optional[str] = None) -> IyzicoResult:
        payload = {"locale": "tr", "conversationId": conversation_id, "paymentId": payment_id}
        if conversation_data:
            payload["conversationData"] = conversation_data
        return await self._post("threeds_auth", payload)

    async def refund(self, conversation_id: str, payment_transaction_id: str, price: Any, ip: str,
                     currency: str = "TRY") -> IyzicoResult:
        payload = {
            "locale": "tr",
            "conversationId": conversation_id,
            "paymentTransactionId": payment_transaction_id,
            "price": format_price(price),
            "currency": currency,
            "ip": ip,
        }
        return await self._post("refund", payload)

    async def cancel(self, conversation_id: str, payment_id: str, ip: str) -> IyzicoResult:
        payload = {"locale": "tr", "conversationId": conversation_id, "paymentId": payment_id, "ip": ip}
        return await self._post("cancel", payload)

    async def retrieve_payment(self, payment_id: Optional[str] = None,
                               conversation_id: Optional[str] = None) -> IyzicoResult:
        payload = {"locale": "tr", "conversationId": conversation_id}
        if payment_id:
            payload["paymentId"] = payment_id
        else:
            payload["paymentConversationId"] = conversation_id
        return await self._post("detail", payload)

    async def installment_info(self, bin_number: str, price: Any,
                               conversation_id: Optional[str] = None) -> IyzicoResult:
        bin_number = "".join(bin_number.split())[:6]
        price_str = format_price(price)
        if not self.enabled:
            logger.warning("iyzico.not_configured.mock_installments")
            return IyzicoResult(status="success", raw=mock_installment_info(bin_number, price_str, conversation_id))
        payload = {
            "locale": "tr",
            "conversationId": conversation_id or f"INST_{int(time.time() * 1000)}",
            "binNumber": bin_number,
            "price": price_str,
        }
        return await self._post("installment", payload)


def mock_installment_info(bin_number: str, price: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "status": "success",
        "conversationId": conversation_id or f"MOCK_{int(time.time() * 1000)}",
        "installmentDetails": [{
            "binNumber": bin_number,
            "price": price,
            "cardType": "CREDIT_CARD",
            "cardAssociation": "MASTER_CARD",
            "cardFamilyName": "Bonus",
            "force3ds": 0,
            "bankCode": 0,
            "bankName": "Test Banka",
            "forceCvc": 0,
            "commercial": 0,
            "installmentPrices": [
                {"installmentNumber": 1, "installmentPrice": price, "totalPrice": price},
            ],
        }],
    }

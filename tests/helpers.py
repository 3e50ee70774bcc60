import base64
from decimal import Decimal
from typing import Any, Dict, List, Optional
import httpx
import orjson
from fusionmarkt.auth.utils import create_access_token, hash_password
from fusionmarkt.notifications.email import SendResult
from fusionmarkt.payments.iyzico import IyzicoClient
from fusionmarkt.schema.full_schema import Orders, Product, ProductVariant, UserRole, Users
from sqlalchemy import select

url_prefix = "/api"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSender:
    """Stands in for the Resend client, keeps every mail it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict[str, str]] = []

    async def send(self, to: str, subject: str, html: str) -> SendResult:
        if self.fail:
            raise httpx.ConnectError("resend unreachable")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return SendResult(success=True, message_id=f"test-{len(self.sent)}")

    def to(self, address: str) -> List[Dict[str, str]]:
        return [m for m in self.sent if m["to"] == address]


class FakeIyzico:
    """httpx.MockTransport handler answering iyzico endpoints from a per-path table."""

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.responses: Dict[str, Any] = {
            "/payment/3dsecure/initialize": {
                "status": "success",
                "threeDSHtmlContent": base64.b64encode(b"<html>3ds</html>").decode(),
            },
            "/payment/3dsecure/auth": {
                "status": "success",
                "paymentId": "pay-1",
                "paidPrice": "200.00",
                "itemTransactions": [
                    {"itemId": "p1", "paymentTransactionId": "tx-1", "price": "200.00", "paidPrice": "200.00"},
                ],
            },
            "/payment/detail": {"status": "failure", "errorCode": "5000"},
            "/payment/refund": {"status": "success", "paymentTransactionId": "tx-1"},
            "/payment/cancel": {"status": "success"},
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = orjson.loads(request.content) if request.content else {}
        self.requests.append({"path": request.url.path, "body": body, "headers": dict(request.headers)})
        answer = self.responses.get(request.url.path)
        if isinstance(answer, Exception):
            raise answer
        if answer is None:
            return httpx.Response(404, json={"status": "failure"})
        return httpx.Response(200, json=answer)

    def calls(self, path: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["path"] == path]


def use_card_gateway(app, card_settings, fake_iyzico) -> IyzicoClient:
    gateway = IyzicoClient(card_settings, transport=httpx.MockTransport(fake_iyzico))
    app.state.gateway = gateway
    return gateway


async def seed_product(session_factory, public_id: str = "p1", price: Any = "100", stock: int = 10,
                       name: str = "Taşınabilir Güç Kaynağı", is_active: bool = True,
                       category: Optional[str] = "Enerji") -> Product:
    async with session_factory() as session:
        product = Product(public_id=public_id, name=name, slug=f"urun-{public_id}", price=Decimal(str(price)),
                          stock=stock, is_active=is_active, category=category)
        session.add(product)
        await session.commit()
        return product


async def seed_variant(session_factory, product: Product, public_id: str = "v1", price: Any = None,
                       stock: int = 5) -> ProductVariant:
    async with session_factory() as session:
        variant = ProductVariant(public_id=public_id, product_id=product.id, name="Renk", value="Siyah",
                                 price=Decimal(str(price)) if price is not None else None, stock=stock)
        session.add(variant)
        await session.commit()
        return variant


async def seed_user(session_factory, email: str, role: str = UserRole.CUSTOMER.value, name: str = "Kayıtlı Kullanıcı",
                    is_guest: bool = False) -> Users:
    async with session_factory() as session:
        user = Users(email=email, name=name, role=role, is_guest=is_guest,
                     password_hash=hash_password("gizli-sifre", rounds=4))
        session.add(user)
        await session.commit()
        return user


def auth_headers(user: Users, settings) -> Dict[str, str]:
    token = create_access_token(user.public_id, user.role, settings=settings)
    return {"Authorization": f"Bearer {token}"}


def order_payload(**overrides) -> Dict[str, Any]:
    payload = {
        "items": [{"productId": "p1", "name": "Taşınabilir Güç Kaynağı", "price": 100, "quantity": 2}],
        "billingAddress": {
            "firstName": "A",
            "lastName": "B",
            "email": "a@b.com",
            "phone": "+905551112233",
            "addressLine1": "X",
            "city": "Ankara",
        },
        "paymentMethod": "bank_transfer",
        "contracts": {"termsAndConditions": True, "distanceSalesContract": True},
    }
    payload.update(overrides)
    return payload


def card_payload(order_number: str, **overrides) -> Dict[str, Any]:
    payload = {
        "orderNumber": order_number,
        "card": {
            "cardHolderName": "Ayşe Yılmaz",
            "cardNumber": "5528 7900 0000 0008",
            "expireMonth": "12",
            "expireYear": "30",
            "cvc": "123",
        },
        "installment": 1,
    }
    payload.update(overrides)
    return payload


async def fetch_order(session_factory, order_number: str) -> Orders:
    async with session_factory() as session:
        res = await session.execute(select(Orders).where(Orders.order_number == order_number))
        return res.scalar_one()


async def product_stock(session_factory, public_id: str = "p1") -> int:
    async with session_factory() as session:
        res = await session.execute(select(Product.stock).where(Product.public_id == public_id))
        return res.scalar_one()


async def user_by_email(session_factory, email: str) -> Optional[Users]:
    async with session_factory() as session:
        res = await session.execute(select(Users).where(Users.email == email))
        return res.scalar_one_or_none()

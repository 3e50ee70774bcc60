import enum
from decimal import Decimal
from uuid import UUID
from uuid6 import uuid7
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Column, SQLModel, Field, Relationship, String
from fusionmarkt.common.utils import now

# JSONB on postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(12, 2)


def new_public_id() -> str:
    return str(uuid7())


class UserRole(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"

class AddressType(str, enum.Enum):
    BILLING = "BILLING"
    SHIPPING = "SHIPPING"

class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    UNKNOWN = "UNKNOWN"      # gateway went silent, needs reconciliation

class PaymentMethod(str, enum.Enum):
    CREDIT_CARD = "CREDIT_CARD"
    BANK_TRANSFER = "BANK_TRANSFER"

class DiscountType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"

class HistoryEntryType(str, enum.Enum):
    ADDRESS_SNAPSHOT = "ADDRESS_SNAPSHOT"
    CONTRACT_ACCEPTANCE = "CONTRACT_ACCEPTANCE"
    STOCK_SHORTFALL = "STOCK_SHORTFALL"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_UNKNOWN = "PAYMENT_UNKNOWN"
    STOCK_ADJUSTED = "STOCK_ADJUSTED"
    STOCK_RESTORED = "STOCK_RESTORED"
    REFUND_REQUIRED = "REFUND_REQUIRED"


class Users(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(
        default_factory=uuid7,
        sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)
    )
    # unique constraint is what settles concurrent guest checkouts on one email
    email: str = Field(sa_column=Column(String(320), nullable=False, unique=True))
    name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    phone: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    password_hash: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    role: str = Field(default=UserRole.CUSTOMER.value, sa_column=Column(String(16), nullable=False))
    is_guest: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))

    addresses: List["Address"] = Relationship(back_populates="user")


class Address(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))
    type: str = Field(default=AddressType.SHIPPING.value, sa_column=Column(String(16), nullable=False))
    title: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    first_name: str = Field(sa_column=Column(String(128), nullable=False))
    last_name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    phone: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    city: str = Field(sa_column=Column(String(128), nullable=False))
    district: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    postal_code: Optional[str] = Field(default=None, sa_column=Column(String(16), nullable=True))
    address_line1: str = Field(sa_column=Column(Text(), nullable=False))
    address_line2: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    country: str = Field(default="Türkiye", sa_column=Column(String(64), nullable=False, default="Türkiye"))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))

    user: "Users" = Relationship(back_populates="addresses")


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    # exposed to clients as productId
    public_id: str = Field(default_factory=new_public_id,
        sa_column=Column(String(64), unique=True, index=True, nullable=False))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    slug: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True, unique=True))
    thumbnail: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    category: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    price: Decimal = Field(sa_column=Column(Money, nullable=False))
    stock: int = Field(default=0, sa_column=Column(Integer(), nullable=False, default=0))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))

    variants: List["ProductVariant"] = Relationship(back_populates="product")


class ProductVariant(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: str = Field(default_factory=new_public_id,
        sa_column=Column(String(64), unique=True, index=True, nullable=False))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), index=True, nullable=False))
    name: str = Field(sa_column=Column(String(128), nullable=False))     # e.g. "Renk"
    value: str = Field(sa_column=Column(String(128), nullable=False))    # e.g. "Siyah"
    price: Optional[Decimal] = Field(default=None, sa_column=Column(Money, nullable=True))  # overrides product price
    stock: int = Field(default=0, sa_column=Column(Integer(), nullable=False, default=0))

    product: "Product" = Relationship(back_populates="variants")


class Coupon(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String(64), nullable=False, unique=True, index=True))
    discount_type: str = Field(default=DiscountType.PERCENTAGE.value, sa_column=Column(String(16), nullable=False))
    discount_value: Decimal = Field(sa_column=Column(Money, nullable=False))
    min_order_amount: Optional[Decimal] = Field(default=None, sa_column=Column(Money, nullable=True))
    max_discount: Optional[Decimal] = Field(default=None, sa_column=Column(Money, nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    starts_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    expires_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    usage_limit: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    used_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))


class Orders(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False))
    order_number: str = Field(sa_column=Column(String(32), nullable=False, unique=True, index=True))
    user_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True))
    status: str = Field(default=OrderStatus.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    payment_status: str = Field(default=PaymentStatus.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    payment_method: str = Field(sa_column=Column(String(32), nullable=False))
    currency: str = Field(default="TRY", sa_column=Column(String(8), nullable=False, default="TRY"))

    subtotal: Decimal = Field(sa_column=Column(Money, nullable=False))
    shipping_cost: Decimal = Field(default=Decimal("0"), sa_column=Column(Money, nullable=False))
    discount: Decimal = Field(default=Decimal("0"), sa_column=Column(Money, nullable=False))
    tax: Decimal = Field(default=Decimal("0"), sa_column=Column(Money, nullable=False))
    total: Decimal = Field(sa_column=Column(Money, nullable=False))

    coupon_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("coupon.id", ondelete="SET NULL"), nullable=True))
    coupon_code: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    billing_address_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("address.id", ondelete="SET NULL"), nullable=True))
    shipping_address_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("address.id", ondelete="SET NULL"), nullable=True))
    customer_note: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))

    contract_access_token: str = Field(sa_column=Column(String(64), nullable=False, unique=True))
    status_history: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONType, nullable=False, default=list))
    # set together with a STOCK_SHORTFALL history entry, drives the reconciliation report
    stock_shortfall: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False, index=True))

    iyzico_payment_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, index=True))
    iyzico_conversation_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    iyzico_payment_transactions: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSONType, nullable=True))

    tracking_number: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    carrier_name: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    invoice_url: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))

    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))
    paid_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    confirmed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    preparing_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    shipped_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    delivered_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

    items: List["OrderItem"] = Relationship(back_populates="order")


# Order --> OrderItems (1:many)
class OrderItem(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="RESTRICT"), nullable=False))
    variant_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("productvariant.id", ondelete="SET NULL"), nullable=True))
    bundle_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    variant_info: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))  # serialized {variant, bundleItemVariants}
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    price: Decimal = Field(sa_column=Column(Money, nullable=False))       # unit price at order time
    subtotal: Decimal = Field(sa_column=Column(Money, nullable=False))

    order: "Orders" = Relationship(back_populates="items")
    product: "Product" = Relationship()

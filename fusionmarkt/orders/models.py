from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from fusionmarkt.schema.full_schema import OrderStatus

# request bodies arrive camelCased from the storefront
camel_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class VariantIn(BaseModel):
    model_config = camel_config

    id: Optional[str] = None
    name: Optional[str] = None
    value: Optional[str] = None


class OrderItemIn(BaseModel):
    model_config = camel_config

    product_id: str
    variant: Optional[VariantIn] = None
    is_bundle: bool = False
    bundle_id: Optional[str] = None
    bundle_item_variants: Optional[Dict[str, Any]] = None
    name: Optional[str] = None
    price: Optional[Decimal] = None     # display hint only
    quantity: int = Field(..., ge=1)


class AddressIn(BaseModel):
    model_config = camel_config

    id: Optional[int] = None
    title: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    postal_code: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    country: Optional[str] = None
    tc_kimlik_no: Optional[str] = None
    save_to_addresses: bool = False


class ContractsIn(BaseModel):
    model_config = camel_config

    terms_and_conditions: bool = False
    distance_sales_contract: bool = False
    newsletter: bool = False


class TotalsIn(BaseModel):
    model_config = camel_config

    subtotal: Optional[Decimal] = None
    shipping: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    grand_total: Optional[Decimal] = None


class OrderCreateIn(BaseModel):
    model_config = camel_config

    items: List[OrderItemIn] = Field(default_factory=list)
    billing_address: Optional[AddressIn] = None
    shipping_address: Optional[AddressIn] = None
    payment_method: Optional[str] = None
    coupon_code: Optional[str] = None
    totals: Optional[TotalsIn] = None
    contracts: Optional[ContractsIn] = None
    newsletter: bool = False
    customer_note: Optional[str] = Field(default=None, max_length=1000)


class SetPasswordIn(BaseModel):
    token: str
    password: str


class StatusUpdateIn(BaseModel):
    model_config = camel_config

    status: OrderStatus
    note: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier_name: Optional[str] = None


class InvoiceIn(BaseModel):
    model_config = camel_config

    invoice_url: str = Field(..., max_length=1024)


class RefundIn(BaseModel):
    model_config = camel_config

    amount: Optional[Decimal] = Field(default=None, gt=0)   # full refund when omitted
    reason: Optional[str] = None

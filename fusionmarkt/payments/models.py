from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field
from fusionmarkt.orders.models import camel_config


class CardIn(BaseModel):
    model_config = camel_config

    card_holder_name: str = Field(..., min_length=1, max_length=128)
    card_number: str = Field(..., min_length=12, max_length=32)
    expire_month: str = Field(..., min_length=1, max_length=2)
    expire_year: str = Field(..., min_length=2, max_length=4)
    cvc: str = Field(..., min_length=3, max_length=4)


class BuyerIn(BaseModel):
    model_config = camel_config

    identity_number: Optional[str] = None
    gsm_number: Optional[str] = None


class PaymentInitIn(BaseModel):
    model_config = camel_config

    order_number: str
    card: CardIn
    installment: int = Field(default=1, ge=1, le=12)
    buyer: Optional[BuyerIn] = None


class InstallmentIn(BaseModel):
    model_config = camel_config

    bin_number: str = Field(..., min_length=6)
    price: Decimal = Field(..., gt=0)

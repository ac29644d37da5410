from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AddressIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(..., alias="firstName", max_length=100)
    last_name: str = Field(..., alias="lastName", max_length=100)
    email: EmailStr
    phone: str = Field(..., max_length=32)
    address: str = Field(..., max_length=300)
    city: str = Field(..., max_length=100)
    state: str = Field(..., max_length=100)
    country: str = Field(..., max_length=100)
    postal_code: str = Field(..., alias="postalCode", max_length=20)


class CartItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="product", min_length=1)
    quantity: int
    price: Decimal
    name: Optional[str] = None
    designer: Optional[str] = None
    image: Optional[str] = None


class CreateOrderIn(BaseModel):
    # subtotal/shipping/tax/total sent by clients are accepted but never used
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    items: List[CartItemIn] = Field(default_factory=list)
    shipping_address: AddressIn = Field(..., alias="shippingAddress")
    billing_address: Optional[AddressIn] = Field(None, alias="billingAddress")
    payment_method: str = Field("gateway", alias="paymentMethod")
    notes: Optional[str] = Field(None, max_length=500)

    def cart_snapshot(self) -> List[Dict[str, Any]]:
        return [it.model_dump() for it in self.items]


class InitializePaymentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    email: EmailStr
    callback_url: Optional[str] = Field(None, alias="callbackUrl")


class VerifyPaymentIn(BaseModel):
    reference: str = Field(..., min_length=1, max_length=128)


class AdminVerifyIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")


class AdminUpdateOrderIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[str] = None
    tracking_number: Optional[str] = Field(None, alias="trackingNumber", max_length=128)
    notes: Optional[str] = Field(None, max_length=1000)   # stored as admin notes

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional, List
from decimal import Decimal
from shared.security_config import sanitize_input

from app.coupons import CouponOption
from app.lifecycle import LifecycleState, PaymentOutcome
from app.models import (
    Bill, CartSnapshot, Coupon, OrderAddress, PaymentSession, TipSelection,
)

# --- Requests ---

class AddressSelect(BaseModel):
    address_id: str

    @field_validator('address_id')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class LocationRefine(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    landmark: Optional[str] = None

    @field_validator('street', 'city', 'state', 'pincode', 'landmark')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class LiveLocation(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

class CouponApply(BaseModel):
    code: str = Field(..., min_length=1)

    @field_validator('code')
    def sanitize_code(cls, v):
        return sanitize_input(v)

class TipUpdate(BaseModel):
    preset: Optional[Decimal] = None
    custom: Optional[Decimal] = None

    @model_validator(mode="after")
    def one_kind_only(self):
        if self.preset is not None and self.custom is not None:
            raise ValueError("Choose either a preset or a custom tip, not both")
        return self

class GiftPackagingUpdate(BaseModel):
    enabled: bool

class GstinUpdate(BaseModel):
    gstin: Optional[str] = None

class QuantityUpdate(BaseModel):
    quantity: int = Field(..., ge=0)
    variant_id: Optional[str] = None

class ProfileCompletion(BaseModel):
    name: str
    email: EmailStr

    @field_validator('name')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class PaymentSuccessCallback(BaseModel):
    order_id: str
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str

class PaymentFailureCallback(BaseModel):
    order_id: str
    reason: Optional[str] = None

    @field_validator('reason')
    def sanitize_reason(cls, v):
        return sanitize_input(v)

# --- Responses ---

class CheckoutStateResponse(BaseModel):
    state: LifecycleState
    bill: Bill
    cart: CartSnapshot
    addresses: List[OrderAddress]
    selected_address: Optional[OrderAddress] = None
    map_selected: bool
    tip: TipSelection
    gift_packaging: bool
    gstin: Optional[str] = None
    applied_coupon: Optional[Coupon] = None
    payment_session: Optional[PaymentSession] = None
    order_id: Optional[str] = None
    amount_due: Optional[Decimal] = None
    placed_order_id: Optional[str] = None
    last_error: Optional[str] = None
    is_complete: bool

class CouponSheetResponse(BaseModel):
    coupons: List[CouponOption]
    subtotal: Decimal

class CouponAppliedResponse(BaseModel):
    coupon: Coupon
    discount_amount: Decimal
    celebrate: bool
    bill: Bill

class GstinResponse(BaseModel):
    gstin: Optional[str] = None

class ProfilePrefill(BaseModel):
    name: str = ""
    email: str = ""

class PlaceOrderResponse(BaseModel):
    requires_profile: bool = False
    profile_prefill: Optional[ProfilePrefill] = None
    order_id: Optional[str] = None
    payment_session: Optional[PaymentSession] = None

class PaymentResultResponse(BaseModel):
    outcome: PaymentOutcome
    bill: Bill

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field

# --- Catalog / Cart ---

class ProductSnapshot(BaseModel):
    id: str
    name: str
    image_url: Optional[str] = None
    pack: Optional[str] = None
    price: Decimal
    mrp: Optional[Decimal] = None
    disc_price: Optional[Decimal] = None # Per-product discount rule
    category_id: Optional[str] = None

class ProductVariant(BaseModel):
    id: str
    label: Optional[str] = None
    price: Optional[Decimal] = None
    mrp: Optional[Decimal] = None
    disc_price: Optional[Decimal] = None

class CartItem(BaseModel):
    product: ProductSnapshot
    variant: Optional[ProductVariant] = None
    quantity: int = Field(..., ge=1)

class CartSnapshot(BaseModel):
    items: List[CartItem] = []
    estimated_delivery_fee: Optional[Decimal] = None
    free_delivery_threshold: Optional[Decimal] = None
    platform_fee: Optional[Decimal] = None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def is_empty(self) -> bool:
        return len(self.items) == 0

class DeliveryEstimate(BaseModel):
    estimated_delivery_fee: Optional[Decimal] = None
    free_delivery_threshold: Optional[Decimal] = None
    platform_fee: Optional[Decimal] = None

# --- Coupons ---

class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"

class Coupon(BaseModel):
    id: Optional[str] = None
    code: str
    title: Optional[str] = None
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    min_order_value: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None # percentage coupons only
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True

    def matches(self, code: str) -> bool:
        return self.code.strip().upper() == (code or "").strip().upper()

class ValidatedDiscount(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    subtotal: Decimal # subtotal_before_coupon the server validated against
    amount: Decimal

class CouponValidation(BaseModel):
    is_valid: bool
    discount_amount: Decimal = Decimal("0")
    reason: Optional[str] = None
    coupon: Optional[Coupon] = None

# --- Customer ---

class GeoPoint(BaseModel):
    latitude: float
    longitude: float

class OrderAddress(BaseModel):
    id: Optional[str] = None
    name: str = ""
    phone: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    landmark: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_default: bool = False

    @property
    def coordinates(self) -> Optional[GeoPoint]:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)

class CustomerProfile(BaseModel):
    user_id: str
    name: str = ""
    email: str = ""
    phone: Optional[str] = None

class TipSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    preset: Optional[Decimal] = None
    custom: Optional[Decimal] = None

    @property
    def amount(self) -> Decimal:
        if self.custom is not None:
            return self.custom
        return self.preset or Decimal("0")

# --- Bill ---

class CouponSource(str, Enum):
    SERVER = "server"
    LOCAL = "local"

class Bill(BaseModel):
    model_config = ConfigDict(frozen=True)

    items_total: Decimal
    discounted_total: Decimal
    saved_amount: Decimal
    handling_charge: Decimal
    delivery_charge: Decimal
    free_delivery_threshold: Decimal
    amount_needed_for_free_delivery: Decimal
    subtotal_before_coupon: Decimal
    coupon_code: Optional[str] = None
    coupon_discount: Decimal = Decimal("0")
    coupon_inert: bool = False
    coupon_source: Optional[CouponSource] = None
    tip_amount: Decimal = Decimal("0")
    gift_packaging_fee: Decimal = Decimal("0")
    grand_total: Decimal

# --- Orders ---

class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"

class OrderFees(BaseModel):
    platform_fee: Decimal
    delivery_fee: Decimal

class OrderDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str # Client correlation id
    items: List[CartItem]
    total_items: int
    subtotal: Decimal
    fees: OrderFees
    coupon_discount: Decimal = Decimal("0")
    total_amount: Decimal
    address: OrderAddress
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    tip_amount: Decimal = Decimal("0")
    gstin: Optional[str] = None
    coupon_code: Optional[str] = None
    gift_packaging: bool = False

class CustomerDetails(BaseModel):
    name: str
    email: str
    phone: str = ""

class PaymentSession(BaseModel):
    order_id: str
    gateway_order_id: str
    amount: Decimal
    amount_paise: int
    currency: str
    key_id: str
    customer: CustomerDetails
    opened_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at

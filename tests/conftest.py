import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from shared.utils import Settings

from app.errors import PaymentError, RemoteRejectionError, ServiceUnavailableError
from app.models import (
    CartItem, CartSnapshot, Coupon, CouponValidation, CustomerDetails, CustomerProfile,
    DeliveryEstimate, DiscountType, OrderAddress, OrderDraft, OrderStatus, PaymentSession,
    ProductSnapshot,
)
from app.orchestrator import CheckoutServices


# --- Builders ---

def make_item(product_id: str = "p1", price="100", quantity: int = 1, **product_fields) -> CartItem:
    product = ProductSnapshot(id=product_id, name=f"Product {product_id}", price=Decimal(str(price)), **product_fields)
    return CartItem(product=product, quantity=quantity)

def make_cart(*items: CartItem, **fields) -> CartSnapshot:
    return CartSnapshot(items=list(items), **fields)

def make_address(**fields) -> OrderAddress:
    data = {
        "id": "addr-1",
        "name": "Asha",
        "phone": "9876543210",
        "street": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
        "latitude": 12.9716,
        "longitude": 77.5946,
        "is_default": True,
    }
    data.update(fields)
    return OrderAddress(**data)

def make_coupon(code: str = "SAVE10", **fields) -> Coupon:
    data = {
        "code": code,
        "title": "Save 10%",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("10"),
    }
    data.update(fields)
    return Coupon(**data)


# --- Fakes for the downstream services ---

class FakeCartClient:
    def __init__(self, cart: Optional[CartSnapshot] = None, estimates: Optional[Dict[float, DeliveryEstimate]] = None):
        self.cart = cart or CartSnapshot()
        self.estimates = estimates or {}
        self.estimate_calls: List[tuple] = []
        self.fail_estimate = False
        self.cleared = 0
        self.gates: Dict[float, asyncio.Event] = {}

    async def get_cart(self) -> CartSnapshot:
        return self.cart.model_copy(deep=True)

    async def update_quantity(self, product_id, quantity, variant_id=None) -> CartSnapshot:
        for item in self.cart.items:
            if item.product.id == product_id:
                item.quantity = quantity
        return self.cart.model_copy(deep=True)

    async def remove_item(self, product_id, variant_id=None) -> CartSnapshot:
        self.cart.items = [i for i in self.cart.items if i.product.id != product_id]
        return self.cart.model_copy(deep=True)

    async def clear_cart(self) -> None:
        self.cleared += 1
        self.cart = CartSnapshot()

    async def refresh_delivery_estimate(self, latitude, longitude) -> DeliveryEstimate:
        self.estimate_calls.append((latitude, longitude))
        if latitude in self.gates:
            await self.gates[latitude].wait()
        if self.fail_estimate:
            raise ServiceUnavailableError("Cart service")
        return self.estimates.get(latitude, DeliveryEstimate())


class FakeCouponClient:
    def __init__(self, catalog: Optional[List[Coupon]] = None, results: Optional[Dict[str, CouponValidation]] = None):
        self.catalog = catalog or []
        self.results = results or {}
        self.validated: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None

    async def list_available_coupons(self) -> List[Coupon]:
        return list(self.catalog)

    async def validate_coupon(self, code, subtotal) -> CouponValidation:
        self.validated.append((code, subtotal))
        if self.gate is not None:
            await self.gate.wait()
        return self.results.get(code.upper(), CouponValidation(is_valid=False, reason="Invalid coupon"))


class FakeAddressClient:
    def __init__(self, addresses: Optional[List[OrderAddress]] = None):
        self.addresses = addresses or []
        self.patches: List[tuple] = []

    async def list_addresses(self) -> List[OrderAddress]:
        return [a.model_copy() for a in self.addresses]

    async def update_address(self, address_id, patch) -> OrderAddress:
        self.patches.append((address_id, patch))
        for address in self.addresses:
            if address.id == address_id:
                return address.model_copy(update=patch)
        raise RemoteRejectionError("Address not found")


class FakeOrderClient:
    def __init__(self):
        self.drafts: List[OrderDraft] = []
        self.statuses: List[tuple] = []
        self.fail_with: Optional[Exception] = None

    async def create_order(self, draft: OrderDraft) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.drafts.append(draft)
        return draft.id

    async def update_status(self, order_id, status: OrderStatus, payment_id=None) -> None:
        self.statuses.append((order_id, status, payment_id))


class FakeProfileClient:
    def __init__(self, profile: CustomerProfile):
        self.profile = profile
        self.updates: List[tuple] = []

    async def get_profile(self, user_id) -> CustomerProfile:
        return self.profile.model_copy()

    async def update_profile(self, user_id, name, email) -> CustomerProfile:
        self.updates.append((user_id, name, email))
        self.profile = self.profile.model_copy(update={"name": name, "email": email})
        return self.profile.model_copy()


class FakeGateway:
    VALID_SIGNATURE = "valid-signature"

    def __init__(self, config: Settings):
        self.config = config
        self.opened: List[PaymentSession] = []
        self.fail = False

    async def open_session(self, order_id, amount, customer: CustomerDetails, user_id) -> PaymentSession:
        if self.fail:
            raise PaymentError("Could not start payment. Please try again.")
        opened_at = datetime.utcnow()
        session = PaymentSession(
            order_id=order_id,
            gateway_order_id=f"order_rzp_{len(self.opened) + 1}",
            amount=amount,
            amount_paise=int(amount * 100),
            currency=self.config.PAYMENT_CURRENCY,
            key_id=self.config.RAZORPAY_KEY_ID,
            customer=customer,
            opened_at=opened_at,
            expires_at=opened_at + timedelta(seconds=self.config.PAYMENT_SESSION_TIMEOUT_SECONDS),
        )
        self.opened.append(session)
        return session

    def verify_signature(self, gateway_order_id, payment_id, signature) -> bool:
        return signature == self.VALID_SIGNATURE


# --- Fixtures ---

@pytest.fixture
def config():
    return Settings(_env_file=None)

@pytest.fixture
def address():
    return make_address()

@pytest.fixture
def profile():
    return CustomerProfile(user_id="user-1", name="Asha Rao", email="asha@raomail.in", phone="9876543210")

@pytest.fixture
def placeholder_profile(config):
    return CustomerProfile(user_id="user-1", name=config.PLACEHOLDER_NAME, email=f"9876543210{config.PLACEHOLDER_EMAIL_SUFFIX}")

@pytest.fixture
def cart_client():
    return FakeCartClient(make_cart(make_item("p1", "250", 2)))

@pytest.fixture
def coupon_client():
    return FakeCouponClient()

@pytest.fixture
def order_client():
    return FakeOrderClient()

@pytest.fixture
def gateway(config):
    return FakeGateway(config)

@pytest.fixture
def services(cart_client, coupon_client, address, order_client, profile, gateway):
    return CheckoutServices(
        cart=cart_client,
        coupons=coupon_client,
        addresses=FakeAddressClient([address]),
        orders=order_client,
        profiles=FakeProfileClient(profile),
        gateway=gateway,
    )

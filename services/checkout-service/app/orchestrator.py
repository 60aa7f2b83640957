"""
Checkout session: the state one customer builds up between opening checkout
and paying for the order.

Nothing here is persisted. Abandoning checkout drops the session; the only
server-side commitments are the order created by ``place_order`` and the
payment it is bound to.
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, List, Union

from pydantic import EmailStr, TypeAdapter, ValidationError

from shared.security_config import normalize_gstin
from shared.utils import NotFoundException, Settings, settings as default_settings

from app.clients import AddressClient, CartClient, CouponClient, OrderClient, ProfileClient
from app.coupons import CouponApplication, CouponOption, CouponValidator
from app.delivery import DeliveryFeeResolver
from app.errors import CheckoutValidationError, InvalidTransitionError
from app.gateway import RazorpayGateway
from app.lifecycle import (
    LifecycleState, OrderLifecycleController, PaymentOutcome, PlacedOrder, ProfileRequired,
)
from app.models import (
    Bill, CartSnapshot, CustomerProfile, GeoPoint, OrderAddress, OrderStatus, TipSelection,
)
from app.pricing import derive_bill

logger = logging.getLogger(__name__)

email_adapter = TypeAdapter(EmailStr)


@dataclass
class CheckoutServices:
    cart: CartClient
    coupons: CouponClient
    addresses: AddressClient
    orders: OrderClient
    profiles: ProfileClient
    gateway: RazorpayGateway


class CheckoutSession:
    def __init__(self, user_id: str, services: CheckoutServices, config: Settings = default_settings):
        self.user_id = user_id
        self.services = services
        self.config = config

        self.cart = CartSnapshot()
        self.addresses: List[OrderAddress] = []
        self.selected_address: Optional[OrderAddress] = None
        self.map_selected = False
        self.live_location: Optional[GeoPoint] = None
        self.profile = CustomerProfile(user_id=user_id)
        self.tip = TipSelection()
        self.gift_packaging = False
        self.gstin: Optional[str] = None
        self.placed_order_id: Optional[str] = None

        self.coupons = CouponValidator(services.coupons)
        self.delivery = DeliveryFeeResolver(services.cart)
        self.lifecycle = OrderLifecycleController(services.orders, services.cart, services.gateway, config)

    def bind(self, services: CheckoutServices) -> "CheckoutSession":
        """Point the session at clients carrying the current request's credentials."""
        self.services = services
        self.coupons.client = services.coupons
        self.delivery.client = services.cart
        self.lifecycle.orders = services.orders
        self.lifecycle.cart = services.cart
        self.lifecycle.gateway = services.gateway
        return self

    # --- Loading ---

    async def start(self) -> Bill:
        self.cart, self.addresses, _, self.profile = await asyncio.gather(
            self.services.cart.get_cart(),
            self.services.addresses.list_addresses(),
            self.coupons.load_catalog(),
            self.services.profiles.get_profile(self.user_id),
        )
        if self.addresses:
            default = next((a for a in self.addresses if a.is_default), self.addresses[0])
            await self._use_address(default)
        return self.bill()

    # --- Bill ---

    def bill(self) -> Bill:
        return derive_bill(
            self.cart,
            coupon=self.coupons.applied,
            tip_amount=self.tip.amount,
            gift_packaging=self.gift_packaging,
            config=self.config,
            validated=self.coupons.validated,
        )

    # --- Address ---

    async def _use_address(self, address: OrderAddress) -> None:
        self.selected_address = address
        await self.delivery.refresh(self.cart, address)

    def _find_address(self, address_id: str) -> OrderAddress:
        for address in self.addresses:
            if address.id == address_id:
                return address
        raise NotFoundException("Address not found")

    async def select_address(self, address_id: str) -> Bill:
        address = self._find_address(address_id)
        self.map_selected = False
        await self._use_address(address)
        return self.bill()

    async def refine_location(self, latitude: float, longitude: float, details: Optional[dict] = None) -> Bill:
        """Pin the selected address to a precise map point."""
        if self.selected_address is None or not self.selected_address.id:
            raise CheckoutValidationError("Please select a delivery address.")

        patch = {"latitude": latitude, "longitude": longitude}
        for field in ("street", "city", "state", "pincode", "landmark"):
            value = (details or {}).get(field)
            if value:
                patch[field] = value

        await self.services.addresses.update_address(self.selected_address.id, patch)

        updated = self.selected_address.model_copy(update=patch)
        self.addresses = [updated if a.id == updated.id else a for a in self.addresses]
        self.map_selected = True
        await self._use_address(updated)
        return self.bill()

    def set_live_location(self, point: GeoPoint) -> None:
        self.live_location = point

    # --- Cart ---

    async def update_quantity(self, product_id: str, quantity: int, variant_id: Optional[str] = None) -> Bill:
        if quantity <= 0:
            return await self.remove_item(product_id, variant_id)
        self.cart = await self.services.cart.update_quantity(product_id, quantity, variant_id)
        await self.delivery.refresh(self.cart, self.selected_address)
        return self.bill()

    async def remove_item(self, product_id: str, variant_id: Optional[str] = None) -> Bill:
        self.cart = await self.services.cart.remove_item(product_id, variant_id)
        await self.delivery.refresh(self.cart, self.selected_address)
        return self.bill()

    # --- Coupon ---

    def coupon_sheet(self) -> List[CouponOption]:
        return self.coupons.sheet(self.bill().subtotal_before_coupon)

    async def apply_coupon(self, code: str) -> CouponApplication:
        return await self.coupons.apply(code, self.bill().subtotal_before_coupon)

    def remove_coupon(self) -> Bill:
        self.coupons.remove()
        return self.bill()

    # --- Tip / gift / GSTIN ---

    def select_tip_preset(self, amount: Decimal) -> Bill:
        if amount not in self.config.TIP_PRESETS:
            raise CheckoutValidationError("Please choose one of the suggested tip amounts.")
        self.tip = TipSelection(preset=amount)
        return self.bill()

    def set_custom_tip(self, amount: Optional[Decimal]) -> Bill:
        if amount is None:
            raise CheckoutValidationError("Please enter a tip amount.")
        if amount < 0:
            raise CheckoutValidationError("Tip amount cannot be negative.")
        self.tip = TipSelection(custom=amount)
        return self.bill()

    def clear_tip(self) -> Bill:
        self.tip = TipSelection()
        return self.bill()

    def set_gift_packaging(self, enabled: bool) -> Bill:
        self.gift_packaging = enabled
        return self.bill()

    def set_gstin(self, value: Optional[str]) -> Optional[str]:
        gstin = normalize_gstin(value or "")
        if not gstin:
            self.gstin = None
            return None
        if len(gstin) != self.config.GSTIN_LENGTH:
            raise CheckoutValidationError(f"Please enter a valid {self.config.GSTIN_LENGTH}-character GSTIN")
        self.gstin = gstin
        return gstin

    # --- Ordering ---

    async def place_order(self, bypass_profile_check: bool = False) -> Union[PlacedOrder, ProfileRequired]:
        bill = self.bill()
        return await self.lifecycle.place_order(
            self.cart,
            bill,
            self.selected_address,
            self.profile,
            live_location=self.live_location,
            gstin=self.gstin,
            gift_packaging=self.gift_packaging,
            bypass_profile_check=bypass_profile_check,
        )

    async def complete_profile(self, name: str, email: str) -> Union[PlacedOrder, ProfileRequired]:
        name = (name or "").strip()
        email = (email or "").strip()
        if not name or not email:
            raise CheckoutValidationError("Please enter both name and email")
        try:
            email = email_adapter.validate_python(email)
        except ValidationError:
            raise CheckoutValidationError("Please enter a valid email address")
        await self.lifecycle.expire_if_due()
        if not self.lifecycle.can_place():
            raise InvalidTransitionError("Order is already being placed")

        self.profile = await self.services.profiles.update_profile(self.user_id, name, email)
        logger.info("Profile completed before ordering", extra={"user_id": self.user_id})

        # Re-run the gated placement once, past the profile check
        return await self.place_order(bypass_profile_check=True)

    async def payment_succeeded(self, order_id: str, gateway_order_id: str, payment_id: str, signature: str) -> PaymentOutcome:
        outcome = await self.lifecycle.handle_payment_success(order_id, gateway_order_id, payment_id, signature)
        if outcome.status == OrderStatus.PAID and self.placed_order_id is None:
            self.placed_order_id = outcome.order_id
            self.cart = CartSnapshot()
        return outcome

    async def payment_failed(self, order_id: str, reason: Optional[str] = None) -> PaymentOutcome:
        return await self.lifecycle.handle_payment_failure(order_id, reason)

    # --- View ---

    async def view(self) -> dict:
        """Snapshot after settling an expired payment session."""
        await self.lifecycle.expire_if_due()
        return self.snapshot()

    def snapshot(self) -> dict:
        return {
            "state": self.lifecycle.state,
            "bill": self.bill(),
            "cart": self.cart,
            "addresses": self.addresses,
            "selected_address": self.selected_address,
            "map_selected": self.map_selected,
            "tip": self.tip,
            "gift_packaging": self.gift_packaging,
            "gstin": self.gstin,
            "applied_coupon": self.coupons.applied,
            "payment_session": self.lifecycle.payment_session,
            "order_id": self.lifecycle.order_id,
            "amount_due": self.lifecycle.amount_due,
            "placed_order_id": self.placed_order_id,
            "last_error": self.lifecycle.last_error,
            "is_complete": self.lifecycle.state == LifecycleState.PAID,
        }

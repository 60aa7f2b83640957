"""
Order lifecycle for one checkout attempt.

    no_order -> creating -> pending_payment -> paying -> paid | failed

A failed attempt is never resubmitted: placing the order again starts a
fresh ``creating`` transition with a new correlation id. The order service
must have persisted the pending order before a payment session is opened.
"""
import logging
import random
import string
import time
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from shared.utils import AppException, Settings, settings as default_settings

from app.clients import CartClient, OrderClient
from app.errors import CheckoutValidationError, InvalidTransitionError, PaymentError
from app.gateway import RazorpayGateway
from app.models import (
    Bill, CartSnapshot, CustomerDetails, CustomerProfile, GeoPoint, OrderAddress,
    OrderDraft, OrderFees, OrderStatus, PaymentSession,
)

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Payment session expired. Please place the order again."
PAYMENT_FAILED_MESSAGE = "Payment failed. Please try again."


class LifecycleState(str, Enum):
    NO_ORDER = "no_order"
    CREATING = "creating"
    PENDING_PAYMENT = "pending_payment"
    PAYING = "paying"
    PAID = "paid"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    LifecycleState.NO_ORDER: [LifecycleState.CREATING],
    LifecycleState.CREATING: [LifecycleState.PENDING_PAYMENT, LifecycleState.NO_ORDER],
    LifecycleState.PENDING_PAYMENT: [LifecycleState.PAYING, LifecycleState.FAILED],
    LifecycleState.PAYING: [LifecycleState.PAID, LifecycleState.FAILED],
    LifecycleState.PAID: [],
    LifecycleState.FAILED: [LifecycleState.CREATING],
}


class ProfileRequired(BaseModel):
    name: str
    email: str


class PlacedOrder(BaseModel):
    order_id: str
    payment_session: PaymentSession


class PaymentOutcome(BaseModel):
    order_id: str
    status: OrderStatus
    payment_id: Optional[str] = None
    reason: Optional[str] = None


def generate_order_id() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def is_placeholder_profile(profile: CustomerProfile, config: Settings = default_settings) -> bool:
    return profile.name == config.PLACEHOLDER_NAME or profile.email.endswith(config.PLACEHOLDER_EMAIL_SUFFIX)


def resolve_coordinates(address: OrderAddress, live_location: Optional[GeoPoint]) -> Optional[GeoPoint]:
    latitude = address.latitude if address.latitude is not None else (live_location.latitude if live_location else None)
    longitude = address.longitude if address.longitude is not None else (live_location.longitude if live_location else None)
    if latitude is None or longitude is None:
        return None
    return GeoPoint(latitude=latitude, longitude=longitude)


class OrderLifecycleController:
    def __init__(
        self,
        orders: OrderClient,
        cart: CartClient,
        gateway: RazorpayGateway,
        config: Settings = default_settings,
    ):
        self.orders = orders
        self.cart = cart
        self.gateway = gateway
        self.config = config

        self.state = LifecycleState.NO_ORDER
        self.order_id: Optional[str] = None
        self.frozen_order: Optional[OrderDraft] = None
        self.payment_session: Optional[PaymentSession] = None
        self.outcome: Optional[PaymentOutcome] = None
        self.last_error: Optional[str] = None
        self._cart_cleared = False

    def _transition(self, target: LifecycleState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"Cannot move order from {self.state.value} to {target.value}")
        logger.info("Order state changed", extra={
            "order_id": self.order_id,
            "state": f"{self.state.value}->{target.value}",
        })
        self.state = target

    async def expire_if_due(self, now: Optional[datetime] = None) -> bool:
        if self.state != LifecycleState.PAYING or self.payment_session is None:
            return False
        if not self.payment_session.is_expired(now):
            return False
        self._transition(LifecycleState.FAILED)
        self.last_error = SESSION_EXPIRED_MESSAGE
        self.payment_session = None
        self.outcome = PaymentOutcome(order_id=self.order_id, status=OrderStatus.FAILED, reason=SESSION_EXPIRED_MESSAGE)
        await self._report_status(OrderStatus.FAILED)
        return True

    def can_place(self) -> bool:
        return self.state in (LifecycleState.NO_ORDER, LifecycleState.FAILED)

    @property
    def payment_in_flight(self) -> bool:
        """An order exists and its payment has not settled."""
        return self.state in (LifecycleState.PENDING_PAYMENT, LifecycleState.PAYING)

    def require_basics(self, cart: CartSnapshot, address: Optional[OrderAddress]) -> None:
        if address is None:
            raise CheckoutValidationError("Please select a delivery address.")
        if cart.is_empty:
            raise CheckoutValidationError("Your cart is empty.")

    def validate(
        self,
        cart: CartSnapshot,
        address: Optional[OrderAddress],
        live_location: Optional[GeoPoint],
    ) -> GeoPoint:
        """Hard preconditions of placing an order. Returns the resolved coordinates."""
        self.require_basics(cart, address)
        if not address.city or not address.pincode:
            raise CheckoutValidationError("Please ensure your address has city and pincode.")
        point = resolve_coordinates(address, live_location)
        if point is None:
            raise CheckoutValidationError(
                "Location is required for delivery. Please ensure your address has location data or enable location access."
            )
        return point

    def build_draft(
        self,
        order_id: str,
        cart: CartSnapshot,
        bill: Bill,
        address: OrderAddress,
        point: GeoPoint,
        gstin: Optional[str],
        gift_packaging: bool,
    ) -> OrderDraft:
        return OrderDraft(
            id=order_id,
            items=[item.model_copy(deep=True) for item in cart.items],
            total_items=cart.item_count,
            subtotal=bill.discounted_total,
            fees=OrderFees(platform_fee=bill.handling_charge, delivery_fee=bill.delivery_charge),
            coupon_discount=bill.coupon_discount,
            total_amount=bill.grand_total,
            address=address.model_copy(update={"latitude": point.latitude, "longitude": point.longitude}),
            tip_amount=bill.tip_amount,
            gstin=gstin or None,
            coupon_code=bill.coupon_code,
            gift_packaging=gift_packaging,
        )

    async def place_order(
        self,
        cart: CartSnapshot,
        bill: Bill,
        address: Optional[OrderAddress],
        profile: CustomerProfile,
        live_location: Optional[GeoPoint] = None,
        gstin: Optional[str] = None,
        gift_packaging: bool = False,
        bypass_profile_check: bool = False,
    ):
        await self.expire_if_due()
        if not self.can_place():
            raise InvalidTransitionError(f"An order is already {self.state.value.replace('_', ' ')}")

        self.require_basics(cart, address)

        if not bypass_profile_check and is_placeholder_profile(profile, self.config):
            return ProfileRequired(
                name="" if profile.name == self.config.PLACEHOLDER_NAME else profile.name,
                email="" if profile.email.endswith(self.config.PLACEHOLDER_EMAIL_SUFFIX) else profile.email,
            )

        point = self.validate(cart, address, live_location)

        # Fresh attempt: nothing from a failed one carries over
        order_id = generate_order_id()
        draft = self.build_draft(order_id, cart, bill, address, point, gstin, gift_packaging)
        self.order_id = None
        self.frozen_order = None
        self.payment_session = None
        self.outcome = None
        self.last_error = None
        self._cart_cleared = False
        self._transition(LifecycleState.CREATING)

        try:
            placed_id = await self.orders.create_order(draft)
        except Exception as e:
            self._transition(LifecycleState.NO_ORDER)
            self.last_error = getattr(e, "detail", "Failed to place order. Please try again.")
            logger.warning(f"Order creation failed: {self.last_error}", extra={"order_id": order_id})
            raise

        self.order_id = placed_id
        self.frozen_order = draft.model_copy(update={"id": placed_id})
        self._transition(LifecycleState.PENDING_PAYMENT)

        customer = CustomerDetails(
            name=profile.name or "Customer",
            email=profile.email or "",
            phone=profile.phone or address.phone or "",
        )
        try:
            session = await self.gateway.open_session(placed_id, draft.total_amount, customer, profile.user_id)
        except Exception as e:
            self._transition(LifecycleState.FAILED)
            self.last_error = getattr(e, "detail", PAYMENT_FAILED_MESSAGE)
            await self._report_status(OrderStatus.FAILED)
            raise

        self.payment_session = session
        self._transition(LifecycleState.PAYING)
        return PlacedOrder(order_id=placed_id, payment_session=session)

    def _ensure_current(self, order_id: str) -> None:
        if self.order_id is None or order_id != self.order_id:
            raise InvalidTransitionError("Payment does not belong to the current order")

    async def handle_payment_success(
        self,
        order_id: str,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
    ) -> PaymentOutcome:
        self._ensure_current(order_id)
        await self.expire_if_due()

        if self.state == LifecycleState.PAID:
            return self.outcome
        if self.state == LifecycleState.FAILED:
            raise InvalidTransitionError(self.last_error or PAYMENT_FAILED_MESSAGE)
        if self.state != LifecycleState.PAYING:
            raise InvalidTransitionError(f"Order is {self.state.value}, cannot accept payment")

        if gateway_order_id != self.payment_session.gateway_order_id or not self.gateway.verify_signature(
            gateway_order_id, payment_id, signature
        ):
            logger.warning("Payment signature mismatch", extra={"order_id": order_id})
            raise PaymentError("Payment verification failed")

        self._transition(LifecycleState.PAID)
        self.outcome = PaymentOutcome(order_id=order_id, status=OrderStatus.PAID, payment_id=payment_id)
        self.payment_session = None
        await self._report_status(OrderStatus.PAID, payment_id)
        await self._clear_cart_once()
        return self.outcome

    async def handle_payment_failure(self, order_id: str, reason: Optional[str] = None) -> PaymentOutcome:
        self._ensure_current(order_id)
        await self.expire_if_due()

        if self.state == LifecycleState.FAILED:
            return self.outcome or PaymentOutcome(order_id=order_id, status=OrderStatus.FAILED, reason=self.last_error)
        if self.state != LifecycleState.PAYING:
            raise InvalidTransitionError(f"Order is {self.state.value}, cannot record a payment failure")

        self._transition(LifecycleState.FAILED)
        self.last_error = reason or PAYMENT_FAILED_MESSAGE
        self.payment_session = None
        self.outcome = PaymentOutcome(order_id=order_id, status=OrderStatus.FAILED, reason=self.last_error)
        await self._report_status(OrderStatus.FAILED)
        return self.outcome

    async def _report_status(self, status: OrderStatus, payment_id: Optional[str] = None) -> None:
        try:
            await self.orders.update_status(self.order_id, status, payment_id)
        except AppException as e:
            # The order service reconciles from the gateway webhook
            logger.error(f"Failed to update order status to {status.value}: {e.detail}", extra={"order_id": self.order_id})

    async def _clear_cart_once(self) -> None:
        if self._cart_cleared:
            return
        self._cart_cleared = True
        try:
            await self.cart.clear_cart()
        except AppException as e:
            logger.error(f"Failed to clear cart after payment: {e.detail}", extra={"order_id": self.order_id})

    @property
    def amount_due(self) -> Optional[Decimal]:
        return self.frozen_order.total_amount if self.frozen_order else None

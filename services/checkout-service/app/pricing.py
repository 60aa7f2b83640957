"""
Bill derivation for the checkout screen.

Pure functions only: the orchestrator calls ``derive_bill`` after every
change to the cart, address, coupon, tip or gift flag and renders the
result. The local coupon math is a preview; once the coupon service has
validated a discount for the current subtotal that figure wins.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple, Optional

from shared.utils import Settings, settings as default_settings

from app.models import (
    Bill, CartItem, CartSnapshot, Coupon, CouponSource, DiscountType,
    ProductSnapshot, ProductVariant, ValidatedDiscount,
)

ZERO = Decimal("0")


class ProductPrice(NamedTuple):
    display_price: Decimal
    mrp: Decimal
    discount: int # percent off MRP, for badges
    has_discount: bool


def calculate_product_price(product: ProductSnapshot, variant: Optional[ProductVariant] = None) -> ProductPrice:
    base = variant.price if variant and variant.price is not None else product.price

    disc_price = product.disc_price
    if variant and variant.disc_price is not None:
        disc_price = variant.disc_price

    display = base
    if disc_price is not None and ZERO < disc_price < base:
        display = disc_price

    mrp = (variant.mrp if variant and variant.mrp is not None else None) or product.mrp or base
    # MRP is a ceiling, never below what the customer actually pays
    mrp = max(mrp, display)

    discount = 0
    if mrp > 0 and mrp > display:
        discount = int(((mrp - display) / mrp * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    return ProductPrice(display, mrp, discount, mrp > display)


def line_totals(item: CartItem) -> tuple[Decimal, Decimal]:
    """(MRP total, effective total) for one cart line."""
    price = calculate_product_price(item.product, item.variant)
    return price.mrp * item.quantity, price.display_price * item.quantity


def resolve_delivery_charge(cart: CartSnapshot, discounted_total: Decimal, config: Settings) -> Decimal:
    if cart.estimated_delivery_fee is not None:
        return cart.estimated_delivery_fee
    threshold = free_delivery_threshold(cart, config)
    return ZERO if discounted_total >= threshold else config.DELIVERY_FEE


def free_delivery_threshold(cart: CartSnapshot, config: Settings) -> Decimal:
    if cart.free_delivery_threshold is not None:
        return cart.free_delivery_threshold
    return config.FREE_DELIVERY_THRESHOLD


def meets_min_order(coupon: Coupon, subtotal: Decimal) -> bool:
    return not coupon.min_order_value or subtotal >= coupon.min_order_value


def local_coupon_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    """Preview of what the coupon service will grant for ``subtotal``."""
    if not meets_min_order(coupon, subtotal):
        return ZERO

    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = (subtotal * coupon.discount_value / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        if coupon.max_discount_amount and discount > coupon.max_discount_amount:
            discount = coupon.max_discount_amount
        return discount

    return coupon.discount_value


def derive_bill(
    cart: CartSnapshot,
    coupon: Optional[Coupon] = None,
    tip_amount: Decimal = ZERO,
    gift_packaging: bool = False,
    config: Settings = default_settings,
    validated: Optional[ValidatedDiscount] = None,
) -> Bill:
    items_total = ZERO
    discounted_total = ZERO
    for item in cart.items:
        mrp_total, effective_total = line_totals(item)
        items_total += mrp_total
        discounted_total += effective_total

    saved_amount = items_total - discounted_total
    handling_charge = cart.platform_fee if cart.platform_fee is not None else config.PLATFORM_FEE
    delivery_charge = resolve_delivery_charge(cart, discounted_total, config)
    threshold = free_delivery_threshold(cart, config)

    subtotal_before_coupon = discounted_total + handling_charge + delivery_charge

    coupon_discount = ZERO
    coupon_inert = False
    coupon_source = None
    if coupon is not None:
        if (
            validated is not None
            and coupon.matches(validated.code)
            and validated.subtotal == subtotal_before_coupon
        ):
            coupon_discount = validated.amount
            coupon_source = CouponSource.SERVER
        else:
            coupon_discount = local_coupon_discount(coupon, subtotal_before_coupon)
            coupon_source = CouponSource.LOCAL
        coupon_inert = coupon_discount == ZERO

    gift_packaging_fee = config.GIFT_PACKAGING_FEE if gift_packaging else ZERO

    grand_total = max(
        ZERO,
        discounted_total + handling_charge + delivery_charge + tip_amount + gift_packaging_fee - coupon_discount,
    )

    return Bill(
        items_total=items_total,
        discounted_total=discounted_total,
        saved_amount=saved_amount,
        handling_charge=handling_charge,
        delivery_charge=delivery_charge,
        free_delivery_threshold=threshold,
        amount_needed_for_free_delivery=max(ZERO, threshold - discounted_total),
        subtotal_before_coupon=subtotal_before_coupon,
        coupon_code=coupon.code if coupon else None,
        coupon_discount=coupon_discount,
        coupon_inert=coupon_inert,
        coupon_source=coupon_source,
        tip_amount=tip_amount,
        gift_packaging_fee=gift_packaging_fee,
        grand_total=grand_total,
    )

import logging
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel

from app.clients import CouponClient
from app.errors import InvalidTransitionError, RemoteRejectionError
from app.models import Coupon, DiscountType, ValidatedDiscount
from app.pricing import meets_min_order

logger = logging.getLogger(__name__)


class CouponOption(BaseModel):
    coupon: Coupon
    meets_min_order: bool
    is_selected: bool


class CouponApplication(BaseModel):
    coupon: Coupon
    discount_amount: Decimal
    celebrate: bool


class CouponValidator:
    """
    Holds the coupon selected for one checkout session.

    The coupon service is the authority on validity; the discount it reports
    is cached together with the subtotal it was computed for so the bill can
    tell whether it still applies.
    """

    def __init__(self, client: CouponClient):
        self.client = client
        self.catalog: List[Coupon] = []
        self.applied: Optional[Coupon] = None
        self.validated: Optional[ValidatedDiscount] = None
        self._celebrated = False
        self._generation = 0

    async def load_catalog(self) -> List[Coupon]:
        self.catalog = await self.client.list_available_coupons()
        return self.catalog

    def find(self, code: str) -> Optional[Coupon]:
        for coupon in self.catalog:
            if coupon.matches(code):
                return coupon
        return None

    def sheet(self, subtotal: Decimal) -> List[CouponOption]:
        return [
            CouponOption(
                coupon=coupon,
                meets_min_order=meets_min_order(coupon, subtotal),
                is_selected=self.applied is not None and self.applied.matches(coupon.code),
            )
            for coupon in self.catalog
        ]

    async def apply(self, code: str, current_subtotal: Decimal) -> CouponApplication:
        code = (code or "").strip()
        if not code:
            raise RemoteRejectionError("Invalid coupon")

        self._generation += 1
        generation = self._generation

        # A failure anywhere below leaves self.applied untouched
        result = await self.client.validate_coupon(code, current_subtotal)
        if generation != self._generation:
            logger.info("Coupon validation superseded", extra={"coupon_code": code})
            raise InvalidTransitionError("Coupon selection changed while it was being validated")
        if not result.is_valid:
            logger.info("Coupon rejected", extra={"coupon_code": code})
            raise RemoteRejectionError(result.reason or "Invalid coupon")

        coupon = self.find(code) or result.coupon or Coupon(
            code=code.upper(),
            discount_type=DiscountType.FIXED,
            discount_value=result.discount_amount,
        )

        self.applied = coupon
        self.validated = ValidatedDiscount(
            code=coupon.code,
            subtotal=current_subtotal,
            amount=result.discount_amount,
        )

        celebrate = not self._celebrated
        self._celebrated = True

        logger.info("Coupon applied", extra={"coupon_code": coupon.code})
        return CouponApplication(coupon=coupon, discount_amount=result.discount_amount, celebrate=celebrate)

    def remove(self) -> None:
        self._generation += 1
        self.applied = None
        self.validated = None

import logging
from typing import Optional, Tuple

from shared.utils import AppException

from app.clients import CartClient
from app.models import CartSnapshot, OrderAddress

logger = logging.getLogger(__name__)


class DeliveryFeeResolver:
    """
    Keeps the cart's delivery estimate in step with the selected coordinates.

    Writes into the shared CartSnapshot; pricing reads it on the next render.
    """

    def __init__(self, client: CartClient):
        self.client = client
        self._target: Optional[Tuple[float, float]] = None

    async def refresh(self, cart: CartSnapshot, address: Optional[OrderAddress]) -> bool:
        point = address.coordinates if address else None
        if point is None:
            self._target = None
            cart.estimated_delivery_fee = None
            return False

        target = (point.latitude, point.longitude)
        self._target = target

        try:
            estimate = await self.client.refresh_delivery_estimate(point.latitude, point.longitude)
        except AppException as e:
            logger.warning(f"Delivery estimate refresh failed: {e.detail}")
            if self._target == target:
                cart.estimated_delivery_fee = None
            return False

        if self._target != target:
            # Address changed while this request was in flight
            return False

        cart.estimated_delivery_fee = estimate.estimated_delivery_fee
        if estimate.free_delivery_threshold is not None:
            cart.free_delivery_threshold = estimate.free_delivery_threshold
        if estimate.platform_fee is not None:
            cart.platform_fee = estimate.platform_fee
        return True

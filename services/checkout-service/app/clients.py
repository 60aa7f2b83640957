"""
HTTP clients for the services checkout depends on.

Every downstream service answers with the marketplace envelope
``{"success": bool, "data": ..., "message": str}``. Transport failures
become ``ServiceUnavailableError``; 4xx answers become
``RemoteRejectionError`` carrying the service's message.
"""
import logging
from decimal import Decimal
from typing import Optional, List, Any

import httpx

from shared.utils import settings, NotFoundException

from app.errors import RemoteRejectionError, ServiceUnavailableError
from app.models import (
    CartSnapshot, Coupon, CouponValidation, CustomerProfile, DeliveryEstimate,
    OrderAddress, OrderDraft, OrderStatus,
)

logger = logging.getLogger(__name__)


class ServiceClient:
    service_name = "Service"

    def __init__(
        self,
        base_url: str,
        authorization: Optional[str] = None,
        request_id: Optional[str] = None,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.authorization = authorization
        self.request_id = request_id
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict:
        headers = {}
        if self.authorization:
            headers["Authorization"] = self.authorization
        if self.request_id:
            headers["X-Request-ID"] = self.request_id
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.request(method, path, headers=self._headers(), **kwargs)
            except httpx.RequestError as e:
                logger.error(f"{self.service_name} request failed: {e}", extra={
                    "target": self.base_url,
                    "path": path,
                    "request_id": self.request_id,
                })
                raise ServiceUnavailableError(self.service_name)

        return self._unwrap(response)

    def _unwrap(self, response: httpx.Response) -> Any:
        if response.status_code >= 500:
            raise ServiceUnavailableError(self.service_name)

        try:
            body = response.json()
        except ValueError:
            body = {}

        message = body.get("message") or body.get("detail") if isinstance(body, dict) else None

        if response.status_code == 404:
            raise NotFoundException(message or f"{self.service_name}: resource not found")
        if response.status_code >= 400:
            raise RemoteRejectionError(message or f"{self.service_name} rejected the request")
        if isinstance(body, dict) and body.get("success") is False:
            raise RemoteRejectionError(message or f"{self.service_name} rejected the request")

        return body.get("data") if isinstance(body, dict) else body


class CartClient(ServiceClient):
    service_name = "Cart service"

    async def get_cart(self) -> CartSnapshot:
        data = await self._request("GET", "/cart")
        return CartSnapshot(**(data or {}))

    async def update_quantity(self, product_id: str, quantity: int, variant_id: Optional[str] = None) -> CartSnapshot:
        payload = {"quantity": quantity, "variant_id": variant_id}
        data = await self._request("PUT", f"/cart/items/{product_id}", json=payload)
        return CartSnapshot(**(data or {}))

    async def remove_item(self, product_id: str, variant_id: Optional[str] = None) -> CartSnapshot:
        params = {"variant_id": variant_id} if variant_id else None
        data = await self._request("DELETE", f"/cart/items/{product_id}", params=params)
        return CartSnapshot(**(data or {}))

    async def clear_cart(self) -> None:
        await self._request("DELETE", "/cart")

    async def refresh_delivery_estimate(self, latitude: float, longitude: float) -> DeliveryEstimate:
        data = await self._request(
            "POST", "/cart/delivery-estimate",
            json={"latitude": latitude, "longitude": longitude},
        )
        return DeliveryEstimate(**(data or {}))


class CouponClient(ServiceClient):
    service_name = "Coupon service"

    async def list_available_coupons(self) -> List[Coupon]:
        data = await self._request("GET", "/coupons/available")
        return [Coupon(**c) for c in (data or [])]

    async def validate_coupon(self, code: str, subtotal: Decimal) -> CouponValidation:
        try:
            data = await self._request(
                "POST", "/coupons/validate",
                json={"code": code, "subtotal": str(subtotal)},
            )
        except RemoteRejectionError as e:
            return CouponValidation(is_valid=False, reason=e.detail)
        return CouponValidation(**(data or {"is_valid": False}))


class AddressClient(ServiceClient):
    service_name = "Address service"

    async def list_addresses(self) -> List[OrderAddress]:
        data = await self._request("GET", "/addresses")
        return [OrderAddress(**a) for a in (data or [])]

    async def update_address(self, address_id: str, patch: dict) -> OrderAddress:
        data = await self._request("PATCH", f"/addresses/{address_id}", json=patch)
        return OrderAddress(**data)


class OrderClient(ServiceClient):
    service_name = "Orders service"

    async def create_order(self, draft: OrderDraft) -> str:
        data = await self._request("POST", "/orders", json=draft.model_dump(mode="json"))
        order_id = (data or {}).get("id")
        if not order_id:
            raise RemoteRejectionError("Failed to place order. Please try again.")
        return order_id

    async def update_status(self, order_id: str, status: OrderStatus, payment_id: Optional[str] = None) -> None:
        payload = {"status": status.value, "payment_id": payment_id}
        await self._request("PUT", f"/orders/{order_id}/status", json=payload)


class ProfileClient(ServiceClient):
    service_name = "Profile service"

    async def get_profile(self, user_id: str) -> CustomerProfile:
        data = await self._request("GET", f"/users/{user_id}")
        profile = data.get("profile") or {}
        return CustomerProfile(
            user_id=user_id,
            name=profile.get("full_name") or "",
            email=data.get("email") or "",
            phone=profile.get("phone"),
        )

    async def update_profile(self, user_id: str, name: str, email: str) -> CustomerProfile:
        data = await self._request("PUT", f"/users/{user_id}", json={"full_name": name, "email": email})
        return CustomerProfile(
            user_id=user_id,
            name=data.get("full_name") or name,
            email=data.get("email") or email,
            phone=data.get("phone"),
        )

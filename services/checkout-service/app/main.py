from fastapi import FastAPI, Depends, HTTPException, status, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from typing import Optional
import asyncio
import os
import sys
import httpx

# Add the parent directory to sys.path to resolve shared imports
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../../../")))

from shared.utils import (
    settings, SuccessResponse, HealthResponse, AppException, UnauthorizedException,
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from app.clients import AddressClient, CartClient, CouponClient, OrderClient, ProfileClient
from app.errors import InvalidTransitionError
from app.gateway import RazorpayGateway
from app.lifecycle import ProfileRequired
from app.models import GeoPoint
from app.orchestrator import CheckoutServices, CheckoutSession
from app.schemas import (
    AddressSelect, LocationRefine, LiveLocation, CouponApply, TipUpdate,
    GiftPackagingUpdate, GstinUpdate, QuantityUpdate, ProfileCompletion, ProfilePrefill,
    PaymentSuccessCallback, PaymentFailureCallback,
    CheckoutStateResponse, CouponSheetResponse, CouponAppliedResponse, GstinResponse,
    PlaceOrderResponse, PaymentResultResponse,
)
from app.sessions import SessionRegistry

# Setup Logging
logger = setup_logging("checkout-service")

app = FastAPI(title="Checkout Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="checkout-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sessions = SessionRegistry()
gateway = RazorpayGateway(settings)

# --- Dependencies ---
async def get_current_user(request: Request, authorization: str = Header(...)):
    async with httpx.AsyncClient() as client:
        try:
            headers = {"Authorization": authorization}
            request_id = getattr(request.state, "request_id", None)
            if request_id:
                headers["X-Request-ID"] = request_id

            response = await client.get(f"{settings.AUTH_SERVICE_URL}/verify", headers=headers)
            response.raise_for_status()
            data = response.json()
            if not data.get("success"):
                raise UnauthorizedException("Invalid token")
        except httpx.RequestError:
            raise AppException(status.HTTP_503_SERVICE_UNAVAILABLE, "Auth service unavailable")
        except httpx.HTTPStatusError:
            raise UnauthorizedException("Invalid authentication credentials")

    request.state.user_id = data["data"]["sub"]
    return data["data"]

def get_services(request: Request, authorization: str = Header(...)) -> CheckoutServices:
    request_id = getattr(request.state, "request_id", None)
    return CheckoutServices(
        cart=CartClient(settings.CART_SERVICE_URL, authorization, request_id),
        coupons=CouponClient(settings.COUPON_SERVICE_URL, authorization, request_id),
        addresses=AddressClient(settings.ADDRESS_SERVICE_URL, authorization, request_id),
        orders=OrderClient(settings.ORDERS_SERVICE_URL, authorization, request_id),
        profiles=ProfileClient(settings.PROFILE_SERVICE_URL, authorization, request_id),
        gateway=gateway,
    )

def get_registry() -> SessionRegistry:
    return sessions

def get_checkout(
    user: dict = Depends(get_current_user),
    services: CheckoutServices = Depends(get_services),
    registry: SessionRegistry = Depends(get_registry),
) -> CheckoutSession:
    return registry.require(user["sub"]).bind(services)

async def state_response(checkout: CheckoutSession, message: Optional[str] = None):
    return SuccessResponse(data=CheckoutStateResponse(**(await checkout.view())), message=message)

# --- Endpoints ---

# Session
@app.post("/checkout", response_model=SuccessResponse[CheckoutStateResponse])
async def start_checkout(
    user: dict = Depends(get_current_user),
    services: CheckoutServices = Depends(get_services),
    registry: SessionRegistry = Depends(get_registry),
):
    current = registry.get(user["sub"])
    if current is not None:
        await current.bind(services).lifecycle.expire_if_due()
        if current.lifecycle.payment_in_flight:
            # The open payment must still resolve against this session
            return await state_response(current, "A payment is already in progress")

    checkout = CheckoutSession(user["sub"], services, settings)
    await checkout.start()
    registry.put(checkout)
    if checkout.cart.is_empty:
        return await state_response(checkout, "Your cart is empty")
    return await state_response(checkout)

@app.get("/checkout", response_model=SuccessResponse[CheckoutStateResponse])
async def get_checkout_state(checkout: CheckoutSession = Depends(get_checkout)):
    return await state_response(checkout)

@app.delete("/checkout", response_model=SuccessResponse[dict])
async def abandon_checkout(
    user: dict = Depends(get_current_user),
    services: CheckoutServices = Depends(get_services),
    registry: SessionRegistry = Depends(get_registry),
):
    current = registry.get(user["sub"])
    if current is not None:
        await current.bind(services).lifecycle.expire_if_due()
        if current.lifecycle.payment_in_flight:
            raise InvalidTransitionError("A payment is in progress for this order")
    registry.discard(user["sub"])
    return SuccessResponse(message="Checkout discarded")

# Address
@app.put("/checkout/address", response_model=SuccessResponse[CheckoutStateResponse])
async def select_address(payload: AddressSelect, checkout: CheckoutSession = Depends(get_checkout)):
    await checkout.select_address(payload.address_id)
    return await state_response(checkout)

@app.put("/checkout/address/location", response_model=SuccessResponse[CheckoutStateResponse])
async def refine_location(payload: LocationRefine, checkout: CheckoutSession = Depends(get_checkout)):
    details = payload.model_dump(exclude={"latitude", "longitude"}, exclude_none=True)
    await checkout.refine_location(payload.latitude, payload.longitude, details)
    return await state_response(checkout, "Location and address updated successfully!")

@app.put("/checkout/live-location", response_model=SuccessResponse[CheckoutStateResponse])
async def set_live_location(payload: LiveLocation, checkout: CheckoutSession = Depends(get_checkout)):
    checkout.set_live_location(GeoPoint(latitude=payload.latitude, longitude=payload.longitude))
    return await state_response(checkout)

# Cart lines
@app.put("/checkout/items/{product_id}", response_model=SuccessResponse[CheckoutStateResponse])
async def update_item_quantity(product_id: str, payload: QuantityUpdate, checkout: CheckoutSession = Depends(get_checkout)):
    await checkout.update_quantity(product_id, payload.quantity, payload.variant_id)
    return await state_response(checkout)

@app.delete("/checkout/items/{product_id}", response_model=SuccessResponse[CheckoutStateResponse])
async def remove_item(product_id: str, variant_id: Optional[str] = None, checkout: CheckoutSession = Depends(get_checkout)):
    await checkout.remove_item(product_id, variant_id)
    return await state_response(checkout)

# Coupons
@app.get("/checkout/coupons", response_model=SuccessResponse[CouponSheetResponse])
async def coupon_sheet(checkout: CheckoutSession = Depends(get_checkout)):
    return SuccessResponse(data=CouponSheetResponse(
        coupons=checkout.coupon_sheet(),
        subtotal=checkout.bill().subtotal_before_coupon,
    ))

@app.post("/checkout/coupon", response_model=SuccessResponse[CouponAppliedResponse])
@limiter.limit("30/minute")
async def apply_coupon(payload: CouponApply, request: Request, checkout: CheckoutSession = Depends(get_checkout)):
    applied = await checkout.apply_coupon(payload.code)
    return SuccessResponse(
        data=CouponAppliedResponse(**applied.model_dump(), bill=checkout.bill()),
        message=f"Coupon {applied.coupon.code} applied",
    )

@app.delete("/checkout/coupon", response_model=SuccessResponse[CheckoutStateResponse])
async def remove_coupon(checkout: CheckoutSession = Depends(get_checkout)):
    checkout.remove_coupon()
    return await state_response(checkout, "Coupon removed")

# Tip / gift / GSTIN
@app.put("/checkout/tip", response_model=SuccessResponse[CheckoutStateResponse])
async def update_tip(payload: TipUpdate, checkout: CheckoutSession = Depends(get_checkout)):
    if payload.preset is not None:
        checkout.select_tip_preset(payload.preset)
    elif payload.custom is not None:
        checkout.set_custom_tip(payload.custom)
    else:
        checkout.clear_tip()
    return await state_response(checkout)

@app.put("/checkout/gift-packaging", response_model=SuccessResponse[CheckoutStateResponse])
async def update_gift_packaging(payload: GiftPackagingUpdate, checkout: CheckoutSession = Depends(get_checkout)):
    checkout.set_gift_packaging(payload.enabled)
    return await state_response(checkout)

@app.put("/checkout/gstin", response_model=SuccessResponse[GstinResponse])
async def update_gstin(payload: GstinUpdate, checkout: CheckoutSession = Depends(get_checkout)):
    gstin = checkout.set_gstin(payload.gstin)
    return SuccessResponse(data=GstinResponse(gstin=gstin), message="GSTIN saved" if gstin else "GSTIN removed")

# Ordering
def placement_response(result) -> SuccessResponse:
    if isinstance(result, ProfileRequired):
        return SuccessResponse(
            data=PlaceOrderResponse(
                requires_profile=True,
                profile_prefill=ProfilePrefill(name=result.name, email=result.email),
            ),
            message="Please complete your profile to place the order",
        )
    return SuccessResponse(
        data=PlaceOrderResponse(order_id=result.order_id, payment_session=result.payment_session),
        message="Order created. Please complete the payment.",
    )

@app.post("/checkout/place-order", response_model=SuccessResponse[PlaceOrderResponse])
@limiter.limit("10/minute")
async def place_order(request: Request, checkout: CheckoutSession = Depends(get_checkout)):
    result = await checkout.place_order()
    return placement_response(result)

@app.post("/checkout/profile", response_model=SuccessResponse[PlaceOrderResponse])
@limiter.limit("10/minute")
async def complete_profile(payload: ProfileCompletion, request: Request, checkout: CheckoutSession = Depends(get_checkout)):
    result = await checkout.complete_profile(payload.name, payload.email)
    return placement_response(result)

# Payment callbacks
@app.post("/checkout/payment/success", response_model=SuccessResponse[PaymentResultResponse])
@limiter.limit("30/minute")
async def payment_success(payload: PaymentSuccessCallback, request: Request, checkout: CheckoutSession = Depends(get_checkout)):
    outcome = await checkout.payment_succeeded(
        payload.order_id,
        payload.razorpay_order_id,
        payload.razorpay_payment_id,
        payload.razorpay_signature,
    )
    return SuccessResponse(
        data=PaymentResultResponse(outcome=outcome, bill=checkout.bill()),
        message="Payment successful!",
    )

@app.post("/checkout/payment/failure", response_model=SuccessResponse[PaymentResultResponse])
@limiter.limit("30/minute")
async def payment_failure(payload: PaymentFailureCallback, request: Request, checkout: CheckoutSession = Depends(get_checkout)):
    outcome = await checkout.payment_failed(payload.order_id, payload.reason)
    return SuccessResponse(
        data=PaymentResultResponse(outcome=outcome, bill=checkout.bill()),
        message=outcome.reason,
    )

@app.get("/health", response_model=HealthResponse)
async def health_check():
    async def check_service(url: str) -> str:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(f"{url}/health", timeout=2.0)
            return "healthy" if resp.status_code == 200 else "unhealthy"
        except Exception:
            return "unreachable"

    names = ["auth-service", "cart-service", "coupon-service", "address-service", "orders-service"]
    results = await asyncio.gather(
        check_service(settings.AUTH_SERVICE_URL),
        check_service(settings.CART_SERVICE_URL),
        check_service(settings.COUPON_SERVICE_URL),
        check_service(settings.ADDRESS_SERVICE_URL),
        check_service(settings.ORDERS_SERVICE_URL),
    )
    dependencies = dict(zip(names, results))

    overall_status = "healthy" if all(r == "healthy" for r in results) else "unhealthy"

    if overall_status == "unhealthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service="checkout-service",
        status=overall_status,
        timestamp=datetime.utcnow(),
        version="1.0.0",
        dependencies=dependencies,
    )

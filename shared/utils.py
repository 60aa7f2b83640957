from datetime import datetime
from decimal import Decimal
from typing import Optional, Generic, TypeVar, List
from fastapi import HTTPException, status
from pydantic import BaseModel
from pydantic_settings import BaseSettings

# --- Configuration ---
class Settings(BaseSettings):
    # Downstream services
    AUTH_SERVICE_URL: str = "http://auth-service:8001"
    CART_SERVICE_URL: str = "http://cart-service:8003"
    COUPON_SERVICE_URL: str = "http://coupon-service:8006"
    ADDRESS_SERVICE_URL: str = "http://address-service:8007"
    ORDERS_SERVICE_URL: str = "http://orders-service:8003"
    PROFILE_SERVICE_URL: str = "http://auth-service:8001"
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Pricing
    PLATFORM_FEE: Decimal = Decimal("10")
    DELIVERY_FEE: Decimal = Decimal("30")
    FREE_DELIVERY_THRESHOLD: Decimal = Decimal("199")
    GIFT_PACKAGING_FEE: Decimal = Decimal("30")
    TIP_PRESETS: List[Decimal] = [Decimal("20"), Decimal("30"), Decimal("50")]

    # Checkout inputs
    GSTIN_LENGTH: int = 15
    PLACEHOLDER_NAME: str = "User"
    PLACEHOLDER_EMAIL_SUFFIX: str = "@guest.temp"

    # Payment gateway
    RAZORPAY_KEY_ID: str = "rzp_test_key"
    RAZORPAY_KEY_SECRET: str = "rzp_test_secret"
    PAYMENT_CURRENCY: str = "INR"
    PAYMENT_SESSION_TIMEOUT_SECONDS: int = 900

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ServiceUnavailableException(AppException):
    def __init__(self, detail: str = "Service unavailable"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)

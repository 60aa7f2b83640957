from fastapi import status

from shared.utils import AppException, ServiceUnavailableException

class CheckoutValidationError(AppException):
    """Local input problem; never reaches the network."""
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)

class RemoteRejectionError(AppException):
    """A downstream service refused the request (coupon, order, profile)."""
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class PaymentError(AppException):
    def __init__(self, detail: str = "Payment failed. Please try again."):
        super().__init__(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=detail)

class InvalidTransitionError(AppException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class ServiceUnavailableError(ServiceUnavailableException):
    def __init__(self, service: str):
        super().__init__(detail=f"{service} unavailable")
        self.service = service

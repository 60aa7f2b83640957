import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal

import razorpay
import requests

from shared.utils import Settings, settings as default_settings

from app.errors import PaymentError, ServiceUnavailableError
from app.models import CustomerDetails, PaymentSession

logger = logging.getLogger(__name__)


def to_paise(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class RazorpayGateway:
    """Opens Razorpay orders for pending marketplace orders and verifies callbacks."""

    def __init__(self, config: Settings = default_settings, client: razorpay.Client = None):
        self.config = config
        self.client = client or razorpay.Client(auth=(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET))

    async def open_session(self, order_id: str, amount: Decimal, customer: CustomerDetails, user_id: str) -> PaymentSession:
        payload = {
            "amount": to_paise(amount),
            "currency": self.config.PAYMENT_CURRENCY,
            "receipt": order_id,
            "notes": {
                "order_id": order_id,
                "user_id": user_id,
                "user_email": customer.email,
            },
        }
        try:
            gateway_order = await asyncio.to_thread(self.client.order.create, payload)
        except (razorpay.errors.BadRequestError, razorpay.errors.GatewayError, razorpay.errors.ServerError) as e:
            logger.error(f"Razorpay order creation failed: {e}", extra={"order_id": order_id})
            raise PaymentError("Could not start payment. Please try again.")
        except requests.RequestException as e:
            logger.error(f"Razorpay unreachable: {e}", extra={"order_id": order_id})
            raise ServiceUnavailableError("Payment gateway")

        opened_at = datetime.utcnow()
        return PaymentSession(
            order_id=order_id,
            gateway_order_id=gateway_order["id"],
            amount=amount,
            amount_paise=payload["amount"],
            currency=payload["currency"],
            key_id=self.config.RAZORPAY_KEY_ID,
            customer=customer,
            opened_at=opened_at,
            expires_at=opened_at + timedelta(seconds=self.config.PAYMENT_SESSION_TIMEOUT_SECONDS),
        )

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        try:
            return bool(self.client.utility.verify_payment_signature({
                "razorpay_order_id": gateway_order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            }))
        except razorpay.errors.SignatureVerificationError:
            return False

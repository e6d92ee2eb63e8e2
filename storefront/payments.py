import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from shared.utils import settings, UpstreamFailureException, to_decimal

logger = logging.getLogger(__name__)


class PaymentGatewayClient:
    """Looks up gateway transactions to confirm an order was paid.

    With no ``PAYMENT_GATEWAY_URL`` configured the client runs in sandbox mode
    and accepts every confirmation.
    """

    def __init__(
        self,
        base_url: str = settings.PAYMENT_GATEWAY_URL,
        api_key: str = settings.PAYMENT_GATEWAY_API_KEY,
        timeout: float = settings.PAYMENT_GATEWAY_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @property
    def sandbox(self) -> bool:
        return not self.base_url

    async def verify_transaction(self, order_id: str, transaction_id: str, amount: Decimal,
                                 request_id: Optional[str] = None) -> dict:
        if self.sandbox:
            logger.warning("Payment gateway not configured, accepting confirmation",
                           extra={"order_id": order_id, "transaction_id": transaction_id})
            return {"transaction_id": transaction_id, "status": "succeeded",
                    "order_id": order_id, "amount": float(amount)}

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if request_id:
            headers["X-Request-ID"] = request_id

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                     transport=self.transport) as client:
            try:
                response = await client.get(f"/transactions/{transaction_id}", headers=headers)
                if response.status_code == 404:
                    raise UpstreamFailureException("Transaction not found at payment gateway")
                response.raise_for_status()
            except httpx.RequestError:
                logger.error("Payment gateway unreachable", extra={"order_id": order_id})
                raise UpstreamFailureException("Payment gateway unavailable")
            except httpx.HTTPStatusError as e:
                raise UpstreamFailureException(
                    "Payment gateway rejected the lookup",
                    details={"status_code": e.response.status_code},
                )

        try:
            data = response.json()
        except ValueError:
            raise UpstreamFailureException("Payment gateway sent an unreadable reply")
        if not isinstance(data, dict):
            raise UpstreamFailureException("Payment gateway sent an unreadable reply")

        if data.get("status") != "succeeded":
            raise UpstreamFailureException("Payment was not completed", details={"status": data.get("status")})
        if str(data.get("order_id")) != order_id:
            raise UpstreamFailureException("Transaction belongs to another order")
        try:
            paid = to_decimal(data["amount"])
        except (KeyError, InvalidOperation):
            raise UpstreamFailureException("Payment gateway did not report a valid amount",
                                           details={"paid": data.get("amount")})
        if paid != amount:
            raise UpstreamFailureException(
                "Paid amount does not match order total",
                details={"paid": data.get("amount"), "expected": float(amount)},
            )
        logger.info("Payment confirmed by gateway", extra={"order_id": order_id, "transaction_id": transaction_id})
        return data

"""Payment provider boundary: obtain a payment handle for a cart."""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from openfridge.config import Settings, get_settings
from openfridge.models.checkout import LineSummary, PaymentHandle, PaymentHandleRequest
from openfridge.models.sale import PaymentMethod
from openfridge.utils.logging import get_logger

logger = get_logger(__name__)


class PaymentProviderError(Exception):
    """The provider could not issue a payment handle."""


def describe_items(items: list[LineSummary]) -> list[str]:
    """Render line summaries as ``"2x Cold Brew"``."""
    return [f"{item.qty}x {item.name}" for item in items]


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to cents."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentProvider(ABC):
    """Base class for hosted payment providers."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.transport = transport

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name used in logs."""

    @abstractmethod
    async def create_handle(self, request: PaymentHandleRequest) -> PaymentHandle:
        """Create a single-use payment handle. No retries are attempted."""

    async def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.provider_timeout,
                transport=self.transport,
            ) as client:
                return await client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise PaymentProviderError(f"{self.name} request timed out") from e
        except httpx.HTTPError as e:
            raise PaymentProviderError(str(e) or f"{self.name} request failed") from e


class StripePaymentProvider(PaymentProvider):
    """Stripe PaymentIntents for card and wallet payments."""

    name = "stripe"

    async def create_handle(self, request: PaymentHandleRequest) -> PaymentHandle:
        if not self.settings.stripe_secret_key:
            raise PaymentProviderError("Stripe is not configured")

        response = await self._post(
            f"{self.settings.stripe_api_base}/v1/payment_intents",
            data={
                "amount": str(to_minor_units(request.amount)),
                "currency": self.settings.currency,
                "automatic_payment_methods[enabled]": "true",
                "metadata[machineId]": request.machine_id,
                "metadata[items]": json.dumps(describe_items(request.items)),
            },
            headers={"Authorization": f"Bearer {self.settings.stripe_secret_key}"},
        )

        if not response.is_success:
            message = _error_message(response) or f"Stripe error: {response.status_code}"
            logger.error("stripe_error", status_code=response.status_code, error=message)
            raise PaymentProviderError(message)

        intent = response.json()

        logger.info(
            "payment_intent_created",
            payment_reference=intent["id"],
            machine_id=request.machine_id,
            amount=str(request.amount),
        )

        return PaymentHandle(
            reference=intent["id"],
            client_secret=intent.get("client_secret"),
            amount=request.amount,
            method=request.method,
        )


class CoinbaseCommerceProvider(PaymentProvider):
    """Coinbase Commerce hosted charges for crypto payments."""

    name = "coinbase"

    async def create_handle(self, request: PaymentHandleRequest) -> PaymentHandle:
        if not self.settings.coinbase_commerce_api_key:
            # Demo charge so the kiosk flow can be exercised without an account
            stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
            return PaymentHandle(
                reference=f"demo_{stamp}",
                hosted_url="https://commerce.coinbase.com/checkout/demo",
                amount=request.amount,
                method=PaymentMethod.CRYPTO,
                demo=True,
            )

        response = await self._post(
            f"{self.settings.coinbase_commerce_api_base}/charges",
            json={
                "name": "OpenFridge Purchase",
                "description": ", ".join(describe_items(request.items)),
                "pricing_type": "fixed_price",
                "local_price": {
                    "amount": f"{request.amount:.2f}",
                    "currency": self.settings.currency.upper(),
                },
                "metadata": {"machineId": request.machine_id},
            },
            headers={
                "X-CC-Api-Key": self.settings.coinbase_commerce_api_key,
                "X-CC-Version": "2018-03-22",
            },
        )

        if not response.is_success:
            message = f"Coinbase API error: {response.text}"
            logger.error("coinbase_error", status_code=response.status_code)
            raise PaymentProviderError(message)

        charge = response.json()["data"]

        return PaymentHandle(
            reference=charge["id"],
            hosted_url=charge.get("hosted_url"),
            amount=request.amount,
            method=PaymentMethod.CRYPTO,
        )


def _error_message(response: httpx.Response) -> str | None:
    try:
        return response.json().get("error", {}).get("message")
    except (ValueError, AttributeError):
        return None


def build_providers(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[PaymentMethod, PaymentProvider]:
    """Map each payment method to the provider that handles it."""
    stripe = StripePaymentProvider(settings, transport)
    return {
        PaymentMethod.CARD: stripe,
        PaymentMethod.WALLET: stripe,
        PaymentMethod.CRYPTO: CoinbaseCommerceProvider(settings, transport),
    }

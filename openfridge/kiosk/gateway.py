"""Boundary between the kiosk runtime and the checkout server."""

from typing import Protocol

import httpx

from openfridge.models.checkout import (
    PaymentHandle,
    PaymentHandleRequest,
    SettlementRequest,
    SettlementResult,
)
from openfridge.models.sale import PaymentMethod
from openfridge.services.payments import PaymentProvider, PaymentProviderError
from openfridge.services.settlement import SettlementError, SettlementService
from openfridge.state.store import MachineNotFoundError


class CheckoutGatewayError(Exception):
    """A payment handle or settlement call failed or timed out."""


class CheckoutGateway(Protocol):
    async def create_payment_handle(self, request: PaymentHandleRequest) -> PaymentHandle: ...

    async def settle(self, request: SettlementRequest) -> SettlementResult: ...


class LocalCheckoutGateway:
    """
    Calls the payment providers and the settlement service in-process.

    Timeouts are applied by the caller.
    """

    def __init__(
        self,
        providers: dict[PaymentMethod, PaymentProvider],
        settlement: SettlementService,
    ):
        self.providers = providers
        self.settlement = settlement

    async def create_payment_handle(self, request: PaymentHandleRequest) -> PaymentHandle:
        provider = self.providers.get(request.method)
        if provider is None:
            raise CheckoutGatewayError(f"No payment provider for {request.method.value}")

        try:
            return await provider.create_handle(request)
        except PaymentProviderError as e:
            raise CheckoutGatewayError(str(e)) from e

    async def settle(self, request: SettlementRequest) -> SettlementResult:
        try:
            return await self.settlement.settle(request)
        except (SettlementError, MachineNotFoundError) as e:
            raise CheckoutGatewayError(str(e)) from e


class HttpCheckoutGateway:
    """Calls the checkout routes of a remote server."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        settle_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.settle_timeout = settle_timeout if settle_timeout is not None else timeout
        self.transport = transport

    async def _post(self, path: str, payload: dict, timeout: float) -> dict:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=timeout,
                transport=self.transport,
            ) as client:
                response = await client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise CheckoutGatewayError(f"Request to {path} timed out") from e
        except httpx.HTTPError as e:
            raise CheckoutGatewayError(str(e) or f"Request to {path} failed") from e

        if not response.is_success:
            raise CheckoutGatewayError(_detail(response))
        return response.json()

    async def create_payment_handle(self, request: PaymentHandleRequest) -> PaymentHandle:
        path = (
            "/api/v1/checkout/coinbase"
            if request.method == PaymentMethod.CRYPTO
            else "/api/v1/checkout/stripe"
        )
        data = await self._post(path, request.model_dump(mode="json"), self.timeout)
        return PaymentHandle.model_validate(data)

    async def settle(self, request: SettlementRequest) -> SettlementResult:
        data = await self._post(
            "/api/v1/checkout/confirm",
            request.model_dump(mode="json"),
            self.settle_timeout,
        )
        return SettlementResult.model_validate(data)


def _detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except (ValueError, AttributeError):
        detail = None
    return str(detail) if detail else f"Server error: {response.status_code}"

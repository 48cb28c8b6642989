"""Server-side collaborators: payments, settlement and the smart lock."""

from openfridge.services.lock import SmartLockClient, get_lock_client
from openfridge.services.payments import (
    CoinbaseCommerceProvider,
    PaymentProvider,
    PaymentProviderError,
    StripePaymentProvider,
    build_providers,
)
from openfridge.services.settlement import SettlementError, SettlementService, manual_unlock

__all__ = [
    "SmartLockClient",
    "get_lock_client",
    "PaymentProvider",
    "PaymentProviderError",
    "StripePaymentProvider",
    "CoinbaseCommerceProvider",
    "build_providers",
    "SettlementService",
    "SettlementError",
    "manual_unlock",
]

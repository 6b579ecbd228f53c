"""
Core module - shared enums and exceptions of the billing engine.
"""

from license_api.core.enums import (
    SubscriptionStatus,
    PaymentOutcome,
    BillingAction,
    ExecutionStatus,
)
from license_api.core.exceptions import (
    BillingError,
    SettlementProviderError,
    TransientProviderError,
    SecurityVerificationError,
    AssetSubstitutionError,
    LicenseGrantError,
    NotFoundError,
    ConflictError,
    PaymentRequiredError,
    UnsupportedChainError,
)

__all__ = [
    "SubscriptionStatus",
    "PaymentOutcome",
    "BillingAction",
    "ExecutionStatus",
    "BillingError",
    "SettlementProviderError",
    "TransientProviderError",
    "SecurityVerificationError",
    "AssetSubstitutionError",
    "LicenseGrantError",
    "NotFoundError",
    "ConflictError",
    "PaymentRequiredError",
    "UnsupportedChainError",
]

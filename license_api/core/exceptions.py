"""
Billing exception hierarchy

Every error carries the HTTP status the request boundary answers with.
The recurring sweep never lets one of these escape a record: it turns them
into a per-record error result instead.
"""

from typing import Optional


class BillingError(Exception):
    """Base class for all billing errors"""

    http_status: int = 500

    def __init__(self, message: str, *, http_status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if http_status is not None:
            self.http_status = http_status


class SettlementProviderError(BillingError):
    """Settlement provider rejected the request (4xx, malformed response)"""

    http_status = 502


class TransientProviderError(SettlementProviderError):
    """Network failure, timeout or 5xx from the provider. Resolved by the next sweep."""


class SecurityVerificationError(BillingError):
    """A provider response failed verification. Never retried."""

    http_status = 502


class AssetSubstitutionError(SecurityVerificationError):
    """Committed quote echoes a recipient or destination asset we did not request"""

    def __init__(self, field: str, expected: str, actual: Optional[str]):
        super().__init__(
            f"Quote verification failed: {field} mismatch "
            f"(expected {expected!r}, got {actual!r})"
        )
        self.field = field
        self.expected = expected
        self.actual = actual


class LicenseGrantError(BillingError):
    """Payment was confirmed but the license ledger did not extend the license"""

    http_status = 502


class NotFoundError(BillingError):
    http_status = 404


class ConflictError(BillingError):
    http_status = 409


class PaymentRequiredError(BillingError):
    http_status = 402


class UnsupportedChainError(BillingError):
    """Balance lookup requested for a chain without a provider"""

    http_status = 400

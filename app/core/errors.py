"""
Billing/quota error taxonomy. Services raise these; routes map them to HTTP
status codes (see app/api/routes/razorpay.py and chat.py).
"""


class BillingError(Exception):
    """Base class for subscription and quota errors."""


class AuthenticationFailure(BillingError):
    """Signature mismatch. The payload must not be processed at all."""


class ValidationFailure(BillingError):
    """Malformed or missing required fields. Raised before any state change."""


class ConflictAnomaly(BillingError):
    """State that cannot be reconciled, e.g. terminating an unknown subscription."""


class StoreFailure(BillingError):
    """Underlying persistence error."""


class VerifierMisconfigured(BillingError):
    """A signing secret is not configured."""

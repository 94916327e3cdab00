"""
HMAC-SHA256 authenticity checks for the two Razorpay channels.

Payment verification (client-initiated, after checkout):
    signed string = "<payment_id>|<subscription_id>" for subscription payments
                    "<order_id>|<payment_id>" for one-off orders
    key           = RAZORPAY_KEY_SECRET

Webhooks (provider-initiated):
    signed string = the raw request body, byte for byte
    key           = RAZORPAY_WEBHOOK_SECRET

Both send the digest hex-encoded. The webhook body must be verified exactly as
received: re-serialising parsed JSON can reorder keys or change whitespace and
invalidate an otherwise genuine signature.
"""
import hashlib
import hmac
import logging
from typing import Optional

from app.core import config
from app.core.errors import AuthenticationFailure, ValidationFailure, VerifierMisconfigured

logger = logging.getLogger(__name__)


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Return True only if `signature` is the hex HMAC-SHA256 of `raw_body` under
    `secret`. Constant-time comparison; a missing signature or secret is a mismatch.
    """
    if not secret or not signature:
        return False
    expected = compute_signature(raw_body, secret)
    # Bytes: compare_digest rejects str operands with non-ASCII characters
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8"))


def payment_signable(
    payment_id: str,
    subscription_id: Optional[str] = None,
    order_id: Optional[str] = None,
) -> bytes:
    """Canonical string Razorpay signs for a checkout payment."""
    if subscription_id:
        return f"{payment_id}|{subscription_id}".encode("utf-8")
    if order_id:
        return f"{order_id}|{payment_id}".encode("utf-8")
    raise ValidationFailure("Missing order_id or subscription_id for verification")


class SignatureVerifier:
    """A verifier bound to one channel's shared secret."""

    channel = "generic"

    def __init__(self, secret: str):
        if not secret:
            raise VerifierMisconfigured(f"{self.channel} signing secret is not configured")
        self._secret = secret

    def verify(self, raw_body: bytes, signature: Optional[str]) -> bool:
        ok = verify(raw_body, signature, self._secret)
        if not ok:
            logger.warning("[Signature] %s signature mismatch", self.channel)
        return ok

    def ensure_valid(self, raw_body: bytes, signature: Optional[str]) -> None:
        if not self.verify(raw_body, signature):
            raise AuthenticationFailure(f"Invalid {self.channel} signature")


class PaymentSignatureVerifier(SignatureVerifier):
    channel = "payment"

    def verify_payment(
        self,
        payment_id: str,
        signature: str,
        subscription_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> bool:
        return self.verify(payment_signable(payment_id, subscription_id, order_id), signature)


class WebhookSignatureVerifier(SignatureVerifier):
    channel = "webhook"


def get_payment_verifier() -> PaymentSignatureVerifier:
    """Build from current config. Raises VerifierMisconfigured when the key secret is unset."""
    return PaymentSignatureVerifier(config.RAZORPAY_KEY_SECRET)


def get_webhook_verifier() -> WebhookSignatureVerifier:
    """Build from current config. Raises VerifierMisconfigured when the webhook secret is unset."""
    return WebhookSignatureVerifier(config.RAZORPAY_WEBHOOK_SECRET)

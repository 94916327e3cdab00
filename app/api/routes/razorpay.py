"""
Razorpay subscription routes.

Two independent channels feed the same subscription record:
  - /verify-payment: called by our client right after Razorpay Checkout succeeds
  - /webhook: called by Razorpay, at least once per event, in any order
Both are HMAC-verified before anything is read from the payload.
"""
import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core import config
from app.core.clock import Clock, get_clock
from app.core.errors import (
    AuthenticationFailure,
    ConflictAnomaly,
    StoreFailure,
    ValidationFailure,
    VerifierMisconfigured,
)
from app.db.session import get_db
from app.dependencies.auth import get_current_user_id
from app.schemas.razorpay import (
    CreateSubscriptionResponse,
    SubscriptionStatusResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from app.services.event_dispatcher import parse_event
from app.services.razorpay_client import RazorpayAPIError, RazorpayClient, get_razorpay_client
from app.services.reconciliation import ReconciliationEngine
from app.services.signature import get_payment_verifier, get_webhook_verifier, payment_signable
from app.services.subscription_status import SubscriptionStatusOracle
from app.services.subscription_store import SubscriptionStore

router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-razorpay-signature"
# Statuses from which a subscription can still be cancelled with Razorpay
CANCELLABLE_STATUSES = ("created", "authenticated", "active", "pending", "halted")


@router.post("/verify-payment", response_model=VerifyPaymentResponse)
async def verify_payment(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: str = Depends(get_current_user_id),
):
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request body")

    try:
        data = VerifyPaymentRequest.model_validate(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid input: {e.error_count()} field error(s)",
        )

    try:
        signable = payment_signable(
            data.razorpay_payment_id,
            subscription_id=data.razorpay_subscription_id,
            order_id=data.razorpay_order_id,
        )
    except ValidationFailure as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        verifier = get_payment_verifier()
    except VerifierMisconfigured:
        logger.error("[Razorpay verify] Razorpay key secret is not configured.")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server configuration error")

    try:
        verifier.ensure_valid(signable, data.razorpay_signature)
    except AuthenticationFailure:
        logger.warning(
            "[Razorpay verify] Payment verification failed for payment_id: %s. Signature mismatch.",
            data.razorpay_payment_id,
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment verification failed")

    logger.info("[Razorpay verify] Payment verification successful for payment_id: %s", data.razorpay_payment_id)

    if data.razorpay_subscription_id:
        engine = ReconciliationEngine(SubscriptionStore(db, clock), clock)
        try:
            engine.soft_touch(user_id, data.razorpay_subscription_id)
        except StoreFailure:
            # The payment is verified either way; the webhook will create the record
            logger.exception(
                "[Razorpay verify] Database error during subscription check/creation for %s",
                data.razorpay_subscription_id,
            )

    return VerifyPaymentResponse(verified=True, message="Payment verified successfully")


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    Razorpay webhook. Register https://your-backend.com/api/razorpay/webhook in the
    Razorpay dashboard for the subscription.* events.
    """
    # Raw bytes: the signature covers the body exactly as sent
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        verifier = get_webhook_verifier()
    except VerifierMisconfigured:
        logger.error("[Razorpay webhook] Razorpay webhook secret is not set.")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook secret not configured")

    try:
        verifier.ensure_valid(payload, signature)
    except AuthenticationFailure:
        logger.warning("[Razorpay webhook] Invalid Razorpay webhook signature.")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    try:
        event = parse_event(payload)
    except ValidationFailure as e:
        logger.error("[Razorpay webhook] Error parsing Razorpay webhook payload: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    logger.info("[Razorpay webhook] Received Razorpay webhook event: %s (%s)", event.event_type, event.kind.value)

    engine = ReconciliationEngine(SubscriptionStore(db, clock), clock)
    try:
        engine.apply_webhook(event)
    except ValidationFailure as e:
        logger.error("[Razorpay webhook] Invalid %s event: %s", event.event_type, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    except (ConflictAnomaly, StoreFailure) as e:
        # Non-2xx makes Razorpay redeliver; reconciliation is idempotent so that is safe
        logger.error("[Razorpay webhook] Error processing Razorpay webhook event %s: %s", event.event_type, e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook handler error")

    return {"message": "Webhook received successfully"}


@router.get("/subscription-status", response_model=SubscriptionStatusResponse)
async def subscription_status(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: str = Depends(get_current_user_id),
):
    oracle = SubscriptionStatusOracle.for_session(db, clock)
    try:
        record = oracle.current_record(user_id)
    except StoreFailure:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not load subscription")
    if record is None:
        return SubscriptionStatusResponse(is_subscribed=False)
    return SubscriptionStatusResponse(
        is_subscribed=record.current_period_end > clock.now(),
        status=record.status,
        current_period_end=record.current_period_end,
    )


@router.post("/create-subscription", response_model=CreateSubscriptionResponse)
async def create_subscription(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: str = Depends(get_current_user_id),
    client: RazorpayClient = Depends(get_razorpay_client),
):
    """
    Create a Razorpay subscription for the caller. The returned id is passed to
    Razorpay Checkout on the client; the caller's id travels in the notes.
    """
    if not config.razorpay_configured():
        logger.error("[Razorpay] Configuration missing; aborting subscription creation.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=config.razorpay_missing_config_message(),
        )

    oracle = SubscriptionStatusOracle.for_session(db, clock)
    try:
        current = oracle.current_record(user_id)
    except StoreFailure:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not load subscription")
    if current is not None and current.status == "active" and current.current_period_end > clock.now():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already has an active subscription",
        )

    try:
        subscription = await client.create_subscription(
            config.RAZORPAY_PLAN_ID, user_id, total_count=config.RAZORPAY_TOTAL_COUNT
        )
    except RazorpayAPIError as e:
        raise HTTPException(status_code=e.status_code, detail=f"Razorpay API error: {e.detail}")
    except httpx.TimeoutException:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="Razorpay API timeout")
    except httpx.RequestError as e:
        logger.error("[Razorpay] Request error when calling Razorpay: %s", e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Razorpay request failed")

    subscription_id = subscription.get("id")
    if not subscription_id:
        logger.error("[Razorpay] Missing id in subscription response: %s", subscription)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Razorpay did not return a subscription id")

    logger.info("[Razorpay] Created subscription %s for user %s", subscription_id, user_id)
    return CreateSubscriptionResponse(subscription_id=subscription_id, key_id=config.RAZORPAY_KEY_ID)


@router.post("/cancel-subscription")
async def cancel_subscription(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: str = Depends(get_current_user_id),
    client: RazorpayClient = Depends(get_razorpay_client),
):
    """
    Ask Razorpay to cancel at the end of the current cycle. The local record is
    not touched: the subscription.cancelled webhook will reconcile it.
    """
    if not config.razorpay_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=config.razorpay_missing_config_message(),
        )

    try:
        record = SubscriptionStatusOracle.for_session(db, clock).current_record(user_id)
    except StoreFailure:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not load subscription")
    if record is None or record.status not in CANCELLABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No active subscription found for this user",
        )

    try:
        await client.cancel_subscription(record.razorpay_subscription_id, at_cycle_end=True)
    except RazorpayAPIError as e:
        raise HTTPException(status_code=e.status_code, detail=f"Razorpay cancel error: {e.detail}")
    except httpx.TimeoutException:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="Razorpay API timeout")
    except httpx.RequestError as e:
        logger.error("[Razorpay] Cancel request failed: %s", e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Razorpay cancel request failed")

    logger.info("[Razorpay] Cancellation requested for subscription %s", record.razorpay_subscription_id)
    return {"message": "Subscription cancellation requested with Razorpay."}

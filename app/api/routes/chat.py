"""
Metered AI chat. Free-tier users get FREE_CREDITS_PER_DAY completions per
calendar day; subscribers are never counted.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.clock import Clock, get_clock
from app.core.errors import StoreFailure
from app.db.session import get_db
from app.dependencies.auth import get_current_user_id
from app.schemas.chat import ChatRequest, ChatResponse, UsageResponse
from app.services.completion_backend import CompletionBackend, CompletionError, get_completion_backend
from app.services.quota_gate import QuotaGate
from app.services.subscription_status import SubscriptionStatusOracle
from app.services.usage_store import UsageCounterStore

router = APIRouter()
logger = logging.getLogger(__name__)

LIMIT_REACHED_MESSAGE = "Limit reached for today. Please upgrade to pro."


@router.post("", response_model=ChatResponse)
async def chat(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: str = Depends(get_current_user_id),
    backend: CompletionBackend = Depends(get_completion_backend),
):
    gate = QuotaGate(UsageCounterStore(db), clock)
    try:
        is_subscribed = SubscriptionStatusOracle.for_session(db, clock).is_subscribed(user_id)
        admission = gate.admit(user_id, is_subscribed)
    except StoreFailure:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="An internal server error occurred.")

    if not admission.allowed:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=LIMIT_REACHED_MESSAGE)

    try:
        data = ChatRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid messages format")

    if not data.messages or data.messages[-1].role != "user":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Last message must be from the user.")

    try:
        reply = await backend.complete(data.messages, account_id=data.account_id)
    except CompletionError:
        # Nothing was delivered, so nothing is counted
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="The assistant is unavailable. Please try again.")

    if admission.metered:
        gate.record_completion(user_id)

    return ChatResponse(reply=reply)


@router.get("/usage", response_model=UsageResponse)
async def usage(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: str = Depends(get_current_user_id),
):
    gate = QuotaGate(UsageCounterStore(db), clock)
    try:
        is_subscribed = SubscriptionStatusOracle.for_session(db, clock).is_subscribed(user_id)
        count = gate.store.find_or_create(user_id, clock.today()).count
    except StoreFailure:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not load usage")

    return UsageResponse(
        is_subscribed=is_subscribed,
        count=count,
        limit=gate.daily_limit,
        remaining=max(gate.daily_limit - count, 0),
    )

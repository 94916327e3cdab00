"""
Editor autocomplete: continues the sentence the user is typing.
Not metered; only the chat endpoint counts against the daily allowance.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from app.dependencies.auth import get_current_user_id
from app.schemas.chat import CompletionRequest, CompletionResponse
from app.services.completion_backend import CompletionBackend, CompletionError, get_completion_backend

router = APIRouter()
logger = logging.getLogger(__name__)

AUTOCOMPLETE_MAX_TOKENS = 50


@router.post("", response_model=CompletionResponse)
async def autocomplete(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    backend: CompletionBackend = Depends(get_completion_backend),
):
    try:
        data = CompletionRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing prompt")

    if not data.prompt:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing prompt")

    try:
        completion = await backend.autocomplete(data.prompt, max_tokens=AUTOCOMPLETE_MAX_TOKENS)
    except CompletionError:
        logger.error("[Completion] Autocomplete failed for user %s", user_id)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Autocomplete is unavailable.")

    return CompletionResponse(completion=completion)

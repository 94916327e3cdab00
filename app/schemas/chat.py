from typing import List, Optional

from pydantic import BaseModel


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatMessage]
    account_id: Optional[str] = None


class ChatResponse(BaseModel):
    reply: str


class UsageResponse(BaseModel):
    is_subscribed: bool
    count: int
    limit: int
    remaining: int


class CompletionRequest(BaseModel):
    prompt: Optional[str] = None


class CompletionResponse(BaseModel):
    completion: str

"""
The metered operation behind the chat quota. Retrieval and model specifics
live behind CompletionBackend; the quota gate only cares whether a reply
was produced.
"""
import logging
from typing import List, Optional

import httpx

from app.core import config
from app.schemas.chat import ChatMessage

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an AI email assistant embedded in an email client app. Help the user "
    "compose emails by answering questions and offering relevant suggestions. "
    "Do not invent anything that is not supported by the user's email context. "
    "Keep responses concise and relevant."
)

AUTOCOMPLETE_PROMPT = (
    "You are a helpful AI embedded in a text editor app that is used to autocomplete sentences. "
    "Be knowledgeable, helpful and articulate, friendly and kind. "
    "Keep the response short and directly continue the user's thought."
)


class CompletionError(Exception):
    """The backend failed to produce a reply."""


class CompletionBackend:
    async def complete(
        self,
        messages: List[ChatMessage],
        account_id: Optional[str] = None,
        *,
        system_prompt: str = SYSTEM_PROMPT,
        max_tokens: Optional[int] = None,
    ) -> str:
        raise NotImplementedError

    async def autocomplete(self, prompt: str, max_tokens: int = 50) -> str:
        """Short continuation of the text the user is typing."""
        message = ChatMessage(role="user", content=f"Help me complete my train of thought here: ##{prompt}##")
        return await self.complete([message], system_prompt=AUTOCOMPLETE_PROMPT, max_tokens=max_tokens)


class OpenAICompatibleBackend(CompletionBackend):
    """Calls an OpenAI-compatible /chat/completions endpoint."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self._api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    async def complete(
        self,
        messages: List[ChatMessage],
        account_id: Optional[str] = None,
        *,
        system_prompt: str = SYSTEM_PROMPT,
        max_tokens: Optional[int] = None,
    ) -> str:
        if not self.api_url:
            raise CompletionError("AI_API_URL is not configured")

        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}]
            + [m.model_dump() for m in messages if m.role in ("user", "assistant")],
        }
        if account_id:
            payload["user"] = account_id
        if max_tokens:
            payload["max_tokens"] = max_tokens
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(f"{self.api_url}/chat/completions", json=payload, headers=headers)
            r.raise_for_status()
            data = r.json()
            return data["choices"][0]["message"]["content"]
        except httpx.HTTPError as e:
            logger.error("[Chat] Completion request failed: %s", e)
            raise CompletionError(str(e)) from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error("[Chat] Unexpected completion response shape: %s", e)
            raise CompletionError("Malformed completion response") from e


def get_completion_backend() -> CompletionBackend:
    return OpenAICompatibleBackend(config.AI_API_URL, config.AI_API_KEY, config.AI_MODEL)

"""
Thin async client for the Razorpay Subscriptions REST API.
Only creation and cancellation are called from here; status changes arrive
through webhooks, which stay the source of truth.
"""
import logging
from typing import Optional

import httpx

from app.core import config

logger = logging.getLogger(__name__)


class RazorpayAPIError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"Razorpay API error {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class RazorpayClient:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self._key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        logger.info("[Razorpay] POST %s", url)
        async with httpx.AsyncClient(
            auth=(self.key_id, self._key_secret),
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            r = await client.post(url, json=payload)

        if r.status_code >= 400:
            logger.warning("[Razorpay] Non-2xx response from %s: %s - %s", path, r.status_code, r.text[:500])
            detail = r.text or str(r.status_code)
            try:
                detail = r.json().get("error", {}).get("description") or detail
            except ValueError:
                pass
            raise RazorpayAPIError(r.status_code, detail)
        return r.json()

    async def create_subscription(self, plan_id: str, user_id: str, total_count: int = 12) -> dict:
        """
        Create a subscription for `user_id`. The user id goes into notes so every
        webhook for this subscription tells us who owns it.
        """
        payload = {
            "plan_id": plan_id,
            "total_count": total_count,
            "customer_notify": 1,
            "notes": {"userId": user_id},
        }
        return await self._post("/subscriptions", payload)

    async def cancel_subscription(self, subscription_id: str, at_cycle_end: bool = True) -> dict:
        # cancel_at_cycle_end keeps access until the already-paid period ends
        payload = {"cancel_at_cycle_end": 1 if at_cycle_end else 0}
        return await self._post(f"/subscriptions/{subscription_id}/cancel", payload)


def get_razorpay_client() -> RazorpayClient:
    return RazorpayClient(
        key_id=config.RAZORPAY_KEY_ID,
        key_secret=config.RAZORPAY_KEY_SECRET,
        base_url=config.RAZORPAY_BASE_URL,
    )

import asyncio
import json
import logging
from functools import partial
from typing import Any, Dict, Optional

from pywebpush import webpush, WebPushException

from ember_society.core.config import get_settings

logger = logging.getLogger(__name__)

# Status codes meaning the browser endpoint will never accept pushes again
GONE_STATUS_CODES = (404, 410)


class PushGoneError(Exception):
    """The push service reported the subscription endpoint as permanently invalid."""

    def __init__(self, endpoint: str, status_code: int):
        super().__init__(f"Push endpoint gone ({status_code}): {endpoint}")
        self.endpoint = endpoint
        self.status_code = status_code


class WebPushSender:
    """Delivers encrypted web-push payloads with VAPID credentials."""

    def __init__(self, vapid_private_key: Optional[str] = None, vapid_claim_email: Optional[str] = None):
        settings = get_settings()
        self.vapid_private_key = vapid_private_key or settings.VAPID_PRIVATE_KEY
        self.vapid_claim_email = vapid_claim_email or settings.VAPID_CLAIM_EMAIL

    @property
    def configured(self) -> bool:
        return bool(self.vapid_private_key and self.vapid_claim_email)

    async def send(self, endpoint: str, p256dh: str, auth: str, payload: Dict[str, Any]) -> None:
        """
        Send one push message. Raises ``PushGoneError`` for 404/410 responses and
        lets any other ``WebPushException`` propagate.
        """
        subscription_info = {
            "endpoint": endpoint,
            "keys": {"p256dh": p256dh, "auth": auth},
        }
        send_push = partial(
            webpush,
            subscription_info=subscription_info,
            data=json.dumps(payload),
            vapid_private_key=self.vapid_private_key,
            vapid_claims={"sub": f"mailto:{self.vapid_claim_email}"},
        )
        # webpush is synchronous
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, send_push)
        except WebPushException as ex:
            status_code = ex.response.status_code if ex.response is not None else None
            if status_code in GONE_STATUS_CODES:
                raise PushGoneError(endpoint, status_code) from ex
            raise

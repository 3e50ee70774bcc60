
from dataclasses import dataclass
from typing import Optional
import httpx
from fusionmarkt.common.logging_setup import get_logger

logger = get_logger("fusionmarkt.notifications")


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None


class EmailClient:
    """Resend API sender. Without an API key sending is a logged no-op."""

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = settings.RESEND_API_KEY
        self.api_url = settings.RESEND_API_URL
        self.sender = settings.EMAIL_FROM
        self.timeout = settings.EMAIL_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: str, subject: str, html: str) -> SendResult:
        if not self.enabled:
            logger.info("email.disabled", extra={"email": to, "subject": subject})
            return SendResult(success=True, message_id="email-disabled")

        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(self.api_url, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()

        logger.info("email.sent", extra={"email": to, "subject": subject, "message_id": data.get("id")})
        return SendResult(success=True, message_id=data.get("id"))

"""Async client for the Brevo transactional email API.

Sends are fire-and-forget: there is no retry, and any transport or API
failure is logged and reported through the boolean return value instead of
raising. Without an API key the mailer is disabled and every send is
skipped (logged once per call).
"""

from __future__ import annotations

import httpx
import structlog

from src.crm.config import Settings

logger = structlog.get_logger(__name__)


class BrevoMailer:
    """Minimal Brevo SMTP API client.

    Args:
        api_key: Brevo API key. Empty disables sending.
        sender_name: Display name of the sender.
        sender_email: Sender address (must be validated in Brevo).
        api_url: Transactional email endpoint.
    """

    TIMEOUT = 10.0

    def __init__(
        self,
        api_key: str,
        sender_name: str,
        sender_email: str,
        api_url: str = "https://api.brevo.com/v3/smtp/email",
    ) -> None:
        self._api_key = api_key
        self._sender = {"name": sender_name, "email": sender_email}
        self._api_url = api_url
        self._headers = {
            "api-key": api_key,
            "accept": "application/json",
            "content-type": "application/json",
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> BrevoMailer:
        return cls(
            api_key=settings.BREVO_API_KEY,
            sender_name=settings.BREVO_SENDER_NAME,
            sender_email=settings.BREVO_SENDER_EMAIL,
            api_url=settings.BREVO_API_URL,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the Brevo headers."""
        return httpx.AsyncClient(headers=self._headers, timeout=self.TIMEOUT)

    async def send_email(self, to: str, subject: str, html: str) -> bool:
        """Send one HTML email.

        Args:
            to: Recipient address.
            subject: Subject line.
            html: HTML body.

        Returns:
            True if Brevo accepted the message, False if skipped or failed.
        """
        if not self.enabled:
            logger.warning("mailer.disabled", to=to, subject=subject)
            return False

        payload = {
            "sender": self._sender,
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html,
        }
        try:
            async with self._client() as client:
                response = await client.post(self._api_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "mailer.send_failed",
                to=to,
                subject=subject,
                status_code=exc.response.status_code,
                body=exc.response.text,
            )
            return False
        except httpx.HTTPError as exc:
            logger.error("mailer.send_failed", to=to, subject=subject, error=str(exc))
            return False

        logger.info("mailer.sent", to=to, subject=subject)
        return True

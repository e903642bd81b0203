"""
Transactional email through the Resend REST API.

Every send is independent: a failed recipient is logged and reported back to
the caller, it never aborts the request that triggered it. Only the batch
invite path retries (``send_with_retry``).
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from merchant_pipeline.core.config import Settings
from merchant_pipeline.core.exceptions import EmailDeliveryError
from merchant_pipeline.services.email_templates import EmailTemplate

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def mask_email(email: str) -> str:
    """jane.doe@shop.com -> jan***@shop.com"""
    if not email or "@" not in email:
        return "<unknown>"
    local, domain = email.split("@", 1)
    return f"{local[:3]}***@{domain}"


class NotificationDispatcher:
    """Service for sending transactional emails via Resend."""

    def __init__(
        self,
        api_key: Optional[str],
        sender: str,
        api_root: str = "https://api.resend.com",
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.api_key = api_key
        self.sender = sender
        self.api_root = api_root.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._transport = transport
        self._sleep = sleep

        if self.api_key:
            logger.info("Resend email service initialized successfully")
        else:
            logger.warning("RESEND_API_KEY not configured; emails will not be sent")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> "NotificationDispatcher":
        return cls(
            api_key=settings.RESEND_API_KEY,
            sender=settings.EMAIL_FROM,
            api_root=settings.RESEND_API_ROOT,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            max_attempts=settings.EMAIL_MAX_ATTEMPTS,
            backoff_seconds=settings.EMAIL_BACKOFF_SECONDS,
            transport=transport,
            sleep=sleep,
        )

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _message(self, recipient: str, template: EmailTemplate, cc: Optional[List[str]] = None) -> Dict[str, Any]:
        message = {
            "from": self.sender,
            "to": [recipient],
            "subject": template.subject,
            "html": template.html,
        }
        if cc:
            message["cc"] = cc
        return message

    # Sends one message to one recipient; raises EmailDeliveryError on any failure
    async def send_one(self, recipient: str, template: EmailTemplate, cc: Optional[List[str]] = None) -> str:
        if not self.api_key:
            raise EmailDeliveryError("Email service not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.api_root}/emails",
                    headers=self._headers,
                    json=self._message(recipient, template, cc),
                )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Transport error: {str(e)}") from e

        if response.status_code >= 400:
            raise EmailDeliveryError(self._error_message(response), response.status_code)

        message_id = response.json().get("id", "")
        logger.info(f"Email '{template.subject}' sent to {mask_email(recipient)} (id={message_id})")
        return message_id

    async def send(
        self, recipients: List[str], template: EmailTemplate, cc: Optional[List[str]] = None
    ) -> Dict[str, Optional[str]]:
        """Send ``template`` to each recipient independently, copying ``cc`` on every message.

        Returns a map of recipient to error message (None when delivered).
        Never raises.
        """
        report: Dict[str, Optional[str]] = {}
        for recipient in recipients:
            if not recipient:
                continue
            try:
                await self.send_one(recipient, template, cc)
                report[recipient] = None
            except Exception as e:
                logger.error(f"Failed to send '{template.subject}' to {mask_email(recipient)}: {str(e)}")
                report[recipient] = str(e)
        return report

    # Batch invite path only: linear backoff of attempt * backoff_seconds
    async def send_with_retry(self, recipient: str, template: EmailTemplate) -> str:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.send_one(recipient, template)
            except EmailDeliveryError as e:
                last_error = e
                logger.warning(
                    f"Email attempt {attempt}/{self.max_attempts} failed for {mask_email(recipient)}: {e.message}"
                )
                if attempt < self.max_attempts:
                    await self._sleep(attempt * self.backoff_seconds)
        raise last_error

    async def send_batch(self, messages: List[Tuple[str, EmailTemplate]]) -> List[Optional[str]]:
        """Grouped send; returns one entry per message, the error text or None.

        Raises EmailDeliveryError when the grouped call itself fails, so the
        caller can fall back to individual sends.
        """
        if not messages:
            return []
        if not self.api_key:
            raise EmailDeliveryError("Email service not configured")

        payload = [self._message(recipient, template) for recipient, template in messages]
        headers = dict(self._headers)
        headers["x-batch-validation"] = "permissive"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.api_root}/emails/batch", headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Batch transport error: {str(e)}") from e

        if response.status_code >= 400:
            raise EmailDeliveryError(self._error_message(response), response.status_code)

        body = response.json()
        results: List[Optional[str]] = [None] * len(messages)
        for error in body.get("errors") or []:
            index = error.get("index")
            if isinstance(index, int) and 0 <= index < len(messages):
                results[index] = error.get("message") or "Unknown resend error"

        logger.info(
            f"Batch email sent: {results.count(None)} accepted, {len(messages) - results.count(None)} rejected"
        )
        return results

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
            message = body.get("message") or body.get("error") or response.text
        except ValueError:
            message = response.text
        return f"Resend API error {response.status_code}: {message}"

"""
Twilio SMS Client
=================
Sends text messages through the Twilio Messages REST resource.

The client never raises: every outcome is reported as an ``SmsResult``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

import metrics as app_metrics
from circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from config import Settings, get_settings
from logging_config import get_logger

logger = get_logger(__name__)


def _json_object(response: httpx.Response) -> Dict[str, Any]:
    """The reply body as a dict; empty for non-JSON or non-object bodies."""
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


@dataclass
class SmsResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class TwilioSmsClient:
    """
    Async Twilio client.

    Example:
        ```python
        async with TwilioSmsClient() as sms:
            result = await sms.send_sms("+15551234567", "Site inspection moved to 9am")
        ```
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.breaker = CircuitBreaker(
            name="twilio",
            failure_threshold=5,
            recovery_timeout=60.0,
            expected_exception=httpx.TransportError,
        )

    @property
    def is_configured(self) -> bool:
        s = self.settings
        return bool(s.twilio_account_sid and s.twilio_auth_token and s.twilio_phone_number)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.twilio_api_base,
                auth=(self.settings.twilio_account_sid, self.settings.twilio_auth_token),
                timeout=httpx.Timeout(15.0, connect=5.0),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post_message(self, to: str, body: str) -> httpx.Response:
        path = f"/2010-04-01/Accounts/{self.settings.twilio_account_sid}/Messages.json"
        return await self._get_client().post(
            path,
            data={"To": to, "From": self.settings.twilio_phone_number, "Body": body},
        )

    async def send_sms(self, to: str, body: str) -> SmsResult:
        if not self.is_configured:
            logger.warning("SMS not sent, Twilio not configured")
            app_metrics.sms_sent_total.labels(status="not_configured").inc()
            return SmsResult(success=False, error="Twilio not configured")

        try:
            response = await self.breaker.call(self._post_message, to, body)
        except CircuitBreakerOpenError as e:
            app_metrics.sms_sent_total.labels(status="failed").inc()
            return SmsResult(success=False, error=str(e))
        except httpx.HTTPError as e:
            logger.error("Twilio request failed", to=to, error=str(e))
            app_metrics.sms_sent_total.labels(status="failed").inc()
            return SmsResult(success=False, error=f"SMS provider unreachable: {e.__class__.__name__}")

        payload = _json_object(response)

        if response.status_code >= 400:
            detail = payload.get("message") or response.text
            logger.error("Twilio rejected message", to=to, status=response.status_code, detail=detail)
            app_metrics.sms_sent_total.labels(status="failed").inc()
            return SmsResult(success=False, error=detail or f"HTTP {response.status_code}")

        message_id = payload.get("sid")
        if not message_id:
            logger.error("Twilio reply without a message sid", to=to, status=response.status_code)
            app_metrics.sms_sent_total.labels(status="failed").inc()
            return SmsResult(success=False, error="SMS provider returned an unreadable reply")

        app_metrics.sms_sent_total.labels(status="sent").inc()
        logger.info("SMS sent", to=to, message_id=message_id)
        return SmsResult(success=True, message_id=message_id)

"""SMS gateway senders."""

from __future__ import annotations

import logging
import secrets
import time

from .._base import BaseClient, RequestConfig
from ..exceptions import (
    ProviderError,
    TimeoutError as ProviderTimeoutError,
    describe_sms_error,
)
from ..models import DeliveryReceipt
from ..phone import detect_country, is_e164, mask_phone
from .base import SmsSender

logger = logging.getLogger(__name__)


def _request_id() -> str:
    return f"sms_{int(time.time() * 1000):x}_{secrets.token_hex(3)}"


class TwilioSmsSender(SmsSender):
    """
    Twilio Messages API over httpx.

    A Messaging Service SID is preferred over a From number when both are
    configured. Numbers must already be E.164 and are sent unmodified.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        *,
        from_number: str | None = None,
        messaging_service_sid: str | None = None,
        base_url: str = "https://api.twilio.com",
        timeout: float = 15.0,
        retries: int = 0,
    ) -> None:
        if not (account_sid and auth_token and (from_number or messaging_service_sid)):
            raise ValueError("Twilio credentials not fully configured")
        self.account_sid = account_sid
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid
        self._client = BaseClient(
            base_url,
            timeout=timeout,
            retries=retries,
            auth=(account_sid, auth_token),
        )

    @property
    def send_mode(self) -> str:
        return "messaging_service" if self.messaging_service_sid else "from_number"

    async def close(self) -> None:
        await self._client.close()

    async def send(self, to: str, message: str) -> DeliveryReceipt:
        request_id = _request_id()
        phone = to.strip()
        masked = mask_phone(phone)
        country = detect_country(phone)

        if not is_e164(phone):
            logger.warning(
                "[SMS] requestId=%s to=%s country=%s status=validation_error reason=invalid_e164",
                request_id,
                masked,
                country,
            )
            return DeliveryReceipt(
                delivered=False,
                error_code="INVALID_E164",
                error_message=describe_sms_error(21211),
            )

        form: dict[str, str] = {"To": phone, "Body": message}
        if self.messaging_service_sid:
            form["MessagingServiceSid"] = self.messaging_service_sid
        else:
            form["From"] = self.from_number or ""

        logger.info(
            "[SMS] requestId=%s to=%s country=%s messageLength=%d mode=%s status=sending",
            request_id,
            masked,
            country,
            len(message),
            self.send_mode,
        )

        try:
            data = await self._client.make_request(
                "POST",
                f"/2010-04-01/Accounts/{self.account_sid}/Messages.json",
                config=RequestConfig(form_data=form),
            )
        except ProviderTimeoutError:
            logger.warning(
                "[SMS] requestId=%s to=%s country=%s status=timeout",
                request_id,
                masked,
                country,
            )
            return DeliveryReceipt(
                delivered=False,
                unknown=True,
                error_code="TIMEOUT_ERROR",
                error_message="SMS delivery could not be confirmed.",
            )
        except ProviderError as e:
            logger.error(
                "[SMS] requestId=%s to=%s country=%s status=twilio_error errorCode=%s errorMessage=%r",
                request_id,
                masked,
                country,
                e.code,
                e.message[:100],
            )
            return DeliveryReceipt(
                delivered=False,
                error_code=e.code,
                error_message=describe_sms_error(e.code),
            )

        sid = data.get("sid")
        if not sid:
            logger.error(
                "[SMS] requestId=%s to=%s country=%s status=invalid_response reason=missing_sid",
                request_id,
                masked,
                country,
            )
            return DeliveryReceipt(
                delivered=False,
                error_code="INVALID_RESPONSE",
                error_message="SMS service returned an invalid response.",
            )

        logger.info(
            "[SMS] requestId=%s to=%s country=%s mode=%s status=sent messageId=%s",
            request_id,
            masked,
            country,
            self.send_mode,
            sid,
        )
        return DeliveryReceipt(delivered=True, message_id=sid)


class ConsoleSmsSender(SmsSender):
    """
    Development sender used when no gateway is configured.

    Logs the message and reports it as not delivered.
    """

    def __init__(self, echo_body: bool = False) -> None:
        self.echo_body = echo_body

    async def send(self, to: str, message: str) -> DeliveryReceipt:
        logger.warning("[SMS] Twilio not configured. SMS to %s skipped.", mask_phone(to))
        if self.echo_body:
            logger.info("[SMS] body=%s", message)
        return DeliveryReceipt(
            delivered=False,
            error_code="NOT_CONFIGURED",
            error_message="SMS service not configured.",
        )

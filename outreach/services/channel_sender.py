# outreach/services/channel_sender.py
"""
Channel senders - per-channel transport for campaign messages.

Every sender honours a test mode that short-circuits the provider call and
applies a per-call timeout. A provider answering with an error returns a
failed SendResult; network errors raise TransportFailure and timeouts raise
TransportTimeout.
"""
import logging
import re
import uuid
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests

from outreach.core import config
from outreach.core.exceptions import TransportFailure, TransportTimeout
from outreach.schemas.message import SendResult

log = logging.getLogger("outreach.channel_sender")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email.strip()) is not None


def _mask(recipient: str) -> str:
    return recipient[:5] + "..." if len(recipient) > 5 else recipient


class ChannelSender:
    """Base class for channel transports"""

    channel = "base"

    def __init__(self, test_mode: bool = False, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.test_mode = test_mode
        self.timeout = timeout
        self.http = session or requests.Session()

    def send(self, recipient: str, content: str, sender_id: str, **options) -> SendResult:
        if self.test_mode:
            log.info(f"🧪 [{self.channel}] test mode - not sending to {_mask(recipient)}")
            return SendResult(success=True, provider_id=f"test-{uuid.uuid4().hex[:12]}", cost=Decimal("0"))

        try:
            return self._deliver(recipient, content, sender_id, **options)
        except requests.Timeout as e:
            log.warning(f"⏱️  [{self.channel}] timeout after {self.timeout}s sending to {_mask(recipient)}")
            raise TransportTimeout(f"{self.channel} provider timed out", self.channel, recipient, e) from e
        except requests.RequestException as e:
            log.error(f"❌ [{self.channel}] transport error for {_mask(recipient)}: {e}")
            raise TransportFailure(f"{self.channel} transport error: {e}", self.channel, recipient, e) from e

    def _deliver(self, recipient: str, content: str, sender_id: str, **options) -> SendResult:
        raise NotImplementedError


class SmsGatewaySender(ChannelSender):
    """
    HTTP SMS gateway. The gateway answers `OK:<transaction id>` on success
    and an error text otherwise.
    """

    channel = "sms"

    def __init__(
        self,
        url: str = config.SMS_GATEWAY_URL,
        login: str = config.SMS_GATEWAY_LOGIN,
        password: str = config.SMS_GATEWAY_PASSWORD,
        **kwargs
    ):
        super().__init__(**kwargs)
        self.url = url
        self.login = login
        self.password = password

    def _deliver(self, recipient: str, content: str, sender_id: str, **options) -> SendResult:
        if not self.url or not self.login:
            raise TransportFailure("SMS gateway credentials not configured", self.channel, recipient)

        response = self.http.get(
            self.url,
            params={
                "user": self.login,
                "password": self.password,
                "gsm": recipient,
                "text": content,
                "sender": sender_id,
                "unicode": "1" if options.get("unicode") else "0",
            },
            timeout=self.timeout,
        )
        body = (response.text or "").strip()

        if response.ok and body.startswith("OK"):
            _, _, transaction_id = body.partition(":")
            log.info(f"✅ SMS sent to {_mask(recipient)}: {transaction_id or '-'}")
            return SendResult(success=True, provider_id=transaction_id or None)

        log.warning(f"⚠️ SMS gateway rejected message to {_mask(recipient)}: {body[:200]}")
        return SendResult(
            success=False,
            error_message=body[:500] or f"HTTP {response.status_code}",
            error_code=str(response.status_code),
        )


class EmailApiSender(ChannelSender):
    """HTTP email API taking a JSON payload and returning a message id"""

    channel = "email"

    def __init__(self, url: str = config.EMAIL_API_URL, api_key: Optional[str] = config.EMAIL_API_KEY, **kwargs):
        super().__init__(**kwargs)
        self.url = url
        self.api_key = api_key

    def _deliver(self, recipient: str, content: str, sender_id: str, **options) -> SendResult:
        if not self.url:
            raise TransportFailure("Email API not configured", self.channel, recipient)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        from_field = sender_id
        if options.get("display_name"):
            from_field = f"{options['display_name']} <{sender_id}>"

        response = self.http.post(
            self.url,
            json={
                "from": from_field,
                "to": recipient,
                "subject": options.get("subject") or "",
                "html": content,
            },
            headers=headers,
            timeout=self.timeout,
        )

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.ok:
            cost = payload.get("cost")
            try:
                cost = Decimal(str(cost)) if cost is not None else None
            except InvalidOperation:
                cost = None
            log.info(f"✅ Email sent to {_mask(recipient)}: {payload.get('id')}")
            return SendResult(success=True, provider_id=payload.get("id"), cost=cost)

        error = payload.get("message") or payload.get("error") or response.text[:500]
        log.warning(f"⚠️ Email API rejected message to {_mask(recipient)}: {error}")
        return SendResult(success=False, error_message=error, error_code=str(response.status_code))

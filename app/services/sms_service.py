from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from app.core.config import settings
from app.services.token_codes import TokenCodeType

logger = logging.getLogger(__name__)


class MessageSendError(Exception):
    def __init__(self, error_code: str | int | None, error_message: str, status_code: int | None = None):
        super().__init__(error_message)
        self.error_code = error_code
        self.error_message = error_message
        self.status_code = status_code


class MessageSender(Protocol):
    def send(
        self,
        code_type: TokenCodeType,
        phone_number: str,
        code: str,
        expires_in: int,
        kind: str | None = None,
    ) -> dict[str, Any]:
        ...


def _normalize_phone_to_int(phone: str) -> int:
    digits = "".join(ch for ch in str(phone or "") if ch.isdigit())
    if not digits:
        raise MessageSendError("invalid_phone", "Invalid phone number")
    return int(digits)


def build_otp_message(*, code: str, code_type: TokenCodeType, expires_in: int, kind: str | None = None) -> str:
    templates = settings.OTP_SMS_KIND_TEMPLATES or {}
    template = str(templates.get(kind or "") or settings.OTP_SMS_TEMPLATE or "").strip()
    if not template:
        template = "{code} is your {purpose} code"
    minutes = max(1, (int(expires_in) + 59) // 60)
    try:
        return template.format(
            code=code,
            purpose=TokenCodeType(code_type).label,
            minutes=minutes,
            seconds=int(expires_in),
            kind=kind or "",
        )
    except (KeyError, IndexError, ValueError):
        logger.warning("Broken OTP_SMS_TEMPLATE, falling back to the default text")
        return f"{code} is your {TokenCodeType(code_type).label} code"


class DummySender:
    """Writes the code to the log instead of sending it."""

    def send(self, code_type, phone_number, code, expires_in, kind=None) -> dict[str, Any]:
        logger.info(
            "[SMS MOCK] type=%s kind=%s phone=%s code=%s expires_in=%s",
            TokenCodeType(code_type).value,
            kind or "-",
            phone_number,
            code,
            expires_in,
        )
        return {"provider": "dummy", "status": "accepted", "sent": False, "mocked": True}


class UnknownProviderSender:
    """Fails every send so a misconfigured provider never yields an undelivered code."""

    def __init__(self, provider: str):
        self.provider = provider

    def send(self, code_type, phone_number, code, expires_in, kind=None) -> dict[str, Any]:
        raise MessageSendError("unknown_provider", f"Unknown SMS_PROVIDER: {self.provider}")


class SmsAeroSender:
    def __init__(self, email: str, api_key: str):
        self.email = str(email or "").strip()
        self.api_key = str(api_key or "").strip()

    async def _send_async(self, phone: int, message: str) -> Any:
        try:
            import smsaero
        except ImportError as exc:  # pragma: no cover - runtime dependency branch
            raise MessageSendError("smsaero_missing", "smsaero-api-async is not installed") from exc

        api = smsaero.SmsAero(self.email, self.api_key)
        try:
            return await api.send_sms(phone, message)
        except Exception as exc:  # pragma: no cover - network/runtime branch
            raise MessageSendError("smsaero_error", f"SMS Aero rejected the message: {exc}") from exc
        finally:
            await api.close_session()

    def send(self, code_type, phone_number, code, expires_in, kind=None) -> dict[str, Any]:
        if not self.email or not self.api_key:
            raise MessageSendError("not_configured", "SMSAERO_EMAIL and/or SMSAERO_API_KEY are not set")
        message = build_otp_message(code=code, code_type=code_type, expires_in=expires_in, kind=kind)
        result = asyncio.run(self._send_async(_normalize_phone_to_int(phone_number), message))
        return {"provider": "smsaero", "status": "accepted", "sent": True, "response": result}


class BulkSmsSender:
    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        routing_group: str = "STANDARD",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.username = str(username or "").strip()
        self.password = str(password or "").strip()
        self.routing_group = routing_group
        self.timeout = timeout
        self.transport = transport

    def send(self, code_type, phone_number, code, expires_in, kind=None) -> dict[str, Any]:
        if not self.username or not self.password:
            raise MessageSendError("not_configured", "BULKSMS_USERNAME and/or BULKSMS_PASSWORD are not set")
        payload = {
            "to": phone_number,
            "body": build_otp_message(code=code, code_type=code_type, expires_in=expires_in, kind=kind),
            "routingGroup": self.routing_group,
            "encoding": "UNICODE",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.url, json=payload, auth=(self.username, self.password))
        except httpx.HTTPError as exc:
            raise MessageSendError("bulksms_unreachable", f"BulkSMS request failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                data = response.json()
            except ValueError:
                data = {}
            raise MessageSendError(
                data.get("type") or response.status_code,
                str(data.get("detail") or data.get("title") or response.text or "BulkSMS error"),
                status_code=response.status_code,
            )
        return {"provider": "bulksms", "status": "accepted", "sent": True, "status_code": response.status_code}


def get_message_sender(provider: str | None = None) -> MessageSender:
    name = str(provider if provider is not None else settings.SMS_PROVIDER or "dummy").strip().lower()
    if name in {"", "dummy", "mock", "console"}:
        return DummySender()
    if name in {"smsaero", "sms_aero"}:
        return SmsAeroSender(settings.SMSAERO_EMAIL, settings.SMSAERO_API_KEY)
    if name == "bulksms":
        return BulkSmsSender(
            settings.BULKSMS_URL,
            settings.BULKSMS_USERNAME,
            settings.BULKSMS_PASSWORD,
            routing_group=settings.BULKSMS_ROUTING_GROUP,
            timeout=settings.BULKSMS_TIMEOUT_SECONDS,
        )
    logger.error("Message sender service provider %s not found", name)
    return UnknownProviderSender(name)

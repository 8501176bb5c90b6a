from __future__ import annotations

import logging
from datetime import timedelta

from app.services.rate_limit import RateLimiter
from app.services.sms_service import MessageSendError, MessageSender
from app.services.token_code_store import TokenCodeStore
from app.services.token_codes import (
    Clock,
    IssueOutcome,
    RequestOrigin,
    TokenCodeRepresentation,
    TokenCodeType,
    UnitOfWork,
    VerificationError,
    default_clock,
)

logger = logging.getLogger(__name__)


class CodeIssuer:
    """Sends a verification code to a phone number, reusing a live one when it exists.

    Order matters: abuse check, ongoing reuse, cap on the new code, send,
    persist. A failed delivery leaves nothing behind.
    """

    def __init__(
        self,
        store: TokenCodeStore,
        sender: MessageSender,
        uow: UnitOfWork,
        *,
        token_expires_in: int = 60,
        hour_maximum: int = 3,
        rate_limiter: RateLimiter | None = None,
        origin: RequestOrigin | None = None,
        clock: Clock = default_clock,
    ):
        self.store = store
        self.sender = sender
        self.uow = uow
        self.token_expires_in = int(token_expires_in)
        self.hour_maximum = int(hour_maximum)
        self.rate_limiter = rate_limiter or RateLimiter(store, clock=clock)
        self.origin = origin
        self.clock = clock

    def _abuse(self) -> IssueOutcome:
        return IssueOutcome(
            error=VerificationError.ABUSE_LIMIT_EXCEEDED,
            detail="You requested the maximum number of messages the last hour",
        )

    def send_code(self, phone_number: str, code_type: TokenCodeType, kind: str | None = None) -> IssueOutcome:
        code_type = TokenCodeType(code_type)
        logger.info("Send %s code to %s", code_type.label, phone_number)

        if self.rate_limiter.is_abusing(phone_number, code_type, self.hour_maximum):
            return self._abuse()

        now = self.clock()
        ongoing = self.store.find_ongoing(phone_number, code_type, now)
        if ongoing is not None:
            logger.info("No need of sending a new %s code for %s", code_type.label, phone_number)
            return IssueOutcome(expires_in=ongoing.seconds_left(now), reused=True)

        # A new code counts toward the hourly cap itself.
        if self.rate_limiter.is_abusing(phone_number, code_type, self.hour_maximum - 1):
            return self._abuse()

        token = TokenCodeRepresentation.for_phone_number(phone_number)
        try:
            self.sender.send(code_type, phone_number, token.code, self.token_expires_in, kind)
        except MessageSendError as exc:
            logger.error(
                "Message sending to %s failed with %s: %s",
                phone_number,
                exc.error_code,
                exc.error_message,
            )
            return IssueOutcome(error=VerificationError.DELIVERY_UNAVAILABLE, detail=exc.error_message)

        created_at = self.clock()
        token.type = code_type
        token.created_at = created_at
        token.expires_at = created_at + timedelta(seconds=self.token_expires_in)
        self.store.insert(token, self.origin)
        self.uow.commit()
        logger.info("Sent %s code to %s", code_type.label, phone_number)
        return IssueOutcome(expires_in=self.token_expires_in)

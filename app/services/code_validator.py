from __future__ import annotations

import logging

from app.models.user import User
from app.services.identity_binder import IdentityBinder
from app.services.token_code_store import TokenCodeStore
from app.services.token_codes import (
    Clock,
    TokenAlreadyConfirmed,
    TokenCodeType,
    ValidationOutcome,
    VerificationError,
    default_clock,
)

logger = logging.getLogger(__name__)


class CodeValidator:
    def __init__(self, store: TokenCodeStore, binder: IdentityBinder, clock: Clock = default_clock):
        self.store = store
        self.binder = binder
        self.clock = clock

    def validate_code(
        self,
        account: User,
        phone_number: str,
        code: str,
        code_type: TokenCodeType = TokenCodeType.VERIFY,
    ) -> ValidationOutcome:
        code_type = TokenCodeType(code_type)
        logger.info("Validate %s code for phone %s", code_type.label, phone_number)

        token = self.store.find_ongoing(phone_number, code_type, self.clock())
        if token is None:
            logger.info("There is no valid ongoing %s process for %s", code_type.label, phone_number)
            return ValidationOutcome(error=VerificationError.NO_ONGOING_PROCESS)

        if token.code != code:
            # Guesses are not counted; only issuance is rate limited.
            logger.warning("Account %s sent a %s code that does not match", account.id, code_type.label)
            return ValidationOutcome(error=VerificationError.CODE_MISMATCH, token_id=token.id)

        logger.info("Account %s correctly answered the %s code", account.id, code_type.label)
        try:
            report = self.binder.token_validated(account, phone_number, token.id)
        except TokenAlreadyConfirmed:
            logger.info("The %s code for %s was consumed by a concurrent request", code_type.label, phone_number)
            return ValidationOutcome(error=VerificationError.NO_ONGOING_PROCESS, token_id=token.id)
        return ValidationOutcome(token_id=token.id, binding=report)

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core.config import settings
from app.services.account_store import SqlAccountStore
from app.services.code_issuer import CodeIssuer
from app.services.code_validator import CodeValidator
from app.services.identity_binder import IdentityBinder
from app.services.phone_numbers import is_duplicate_phone_allowed
from app.services.rate_limit import RateLimiter
from app.services.sms_service import MessageSender, get_message_sender
from app.services.token_code_store import SqlTokenCodeStore
from app.services.token_codes import Clock, RequestOrigin, default_clock


class SqlUnitOfWork:
    def __init__(self, db: Session):
        self.db = db

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()


@dataclass
class PhoneVerification:
    accounts: SqlAccountStore
    issuer: CodeIssuer
    validator: CodeValidator
    binder: IdentityBinder


def build_phone_verification(
    db: Session,
    realm_id: str,
    *,
    origin: RequestOrigin | None = None,
    sender: MessageSender | None = None,
    clock: Clock = default_clock,
) -> PhoneVerification:
    """Wire the verification components for one request and realm."""
    store = SqlTokenCodeStore(db, realm_id)
    accounts = SqlAccountStore(db)
    uow = SqlUnitOfWork(db)
    binder = IdentityBinder(
        store,
        accounts,
        uow,
        realm_id=realm_id,
        duplicate_phone_allowed=is_duplicate_phone_allowed(realm_id),
    )
    issuer = CodeIssuer(
        store,
        sender or get_message_sender(),
        uow,
        token_expires_in=settings.TOKEN_EXPIRES_IN,
        hour_maximum=settings.HOUR_MAXIMUM,
        rate_limiter=RateLimiter(store, clock=clock),
        origin=origin,
        clock=clock,
    )
    validator = CodeValidator(store, binder, clock=clock)
    return PhoneVerification(accounts=accounts, issuer=issuer, validator=validator, binder=binder)

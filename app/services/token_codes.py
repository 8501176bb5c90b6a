from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Protocol

from app.models.common import utcnow

Clock = Callable[[], datetime]

CODE_DIGITS = 6


class TokenCodeType(str, Enum):
    VERIFY = "VERIFY"
    OTP = "OTP"
    AUTH = "AUTH"
    RESET = "RESET"
    REGISTRATION = "REGISTRATION"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    TokenCodeType.VERIFY: "verification",
    TokenCodeType.OTP: "OTP",
    TokenCodeType.AUTH: "authentication",
    TokenCodeType.RESET: "reset credential",
    TokenCodeType.REGISTRATION: "registration",
}


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"


@dataclass(frozen=True)
class RequestOrigin:
    """Network provenance of the request that asked for a code. Audit only."""

    ip: str | None = None
    port: int | None = None
    host: str | None = None


@dataclass
class TokenCodeRepresentation:
    id: uuid.UUID
    phone_number: str
    code: str
    type: TokenCodeType | None = None
    created_at: datetime | None = None
    expires_at: datetime | None = None
    confirmed: bool = False
    by_whom: str | None = None

    @classmethod
    def for_phone_number(cls, phone_number: str) -> "TokenCodeRepresentation":
        return cls(id=uuid.uuid4(), phone_number=phone_number, code=generate_code())

    def seconds_left(self, now: datetime) -> int:
        if self.expires_at is None:
            return 0
        return max(0, int((self.expires_at - now).total_seconds()))


class VerificationError(str, Enum):
    ABUSE_LIMIT_EXCEEDED = "ABUSE_LIMIT_EXCEEDED"
    DELIVERY_UNAVAILABLE = "DELIVERY_UNAVAILABLE"
    NO_ONGOING_PROCESS = "NO_ONGOING_PROCESS"
    CODE_MISMATCH = "CODE_MISMATCH"


class TokenAlreadyConfirmed(Exception):
    """Another request consumed the token between lookup and confirmation."""

    def __init__(self, token_id: uuid.UUID):
        super().__init__(f"Token code {token_id} is already confirmed")
        self.token_id = token_id


@dataclass(frozen=True)
class IssueOutcome:
    expires_in: int | None = None
    reused: bool = False
    error: VerificationError | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BindingReport:
    """What token_validated changed besides the verifying account itself."""

    evicted_account_ids: list[str] = field(default_factory=list)
    removed_credential_ids: list[str] = field(default_factory=list)
    failed_account_ids: list[str] = field(default_factory=list)
    cleanup_errors: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_account_ids and not self.cleanup_errors


@dataclass(frozen=True)
class ValidationOutcome:
    error: VerificationError | None = None
    token_id: uuid.UUID | None = None
    binding: BindingReport | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class UnitOfWork(Protocol):
    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


def default_clock() -> datetime:
    return utcnow()

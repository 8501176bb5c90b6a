from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_current_account, get_request_origin
from app.db.session import get_db
from app.models.user import User
from app.schemas.phone import CodeSend, CodeSent, CodeVerify, PhoneVerified, RealmPhoneConfig
from app.services.phone_numbers import (
    PhoneNumberParseError,
    canonicalize_phone_number,
    default_phone_region,
    is_duplicate_phone_allowed,
    matches_number_regex,
    phone_number_regex,
)
from app.services.phone_verification import build_phone_verification
from app.services.token_codes import (
    IssueOutcome,
    RequestOrigin,
    TokenCodeType,
    ValidationOutcome,
    VerificationError,
)

router = APIRouter()
_LOG = logging.getLogger(__name__)

CODE_TYPES_BY_PATH = {
    "verification": TokenCodeType.VERIFY,
    "otp": TokenCodeType.OTP,
    "authentication": TokenCodeType.AUTH,
    "reset": TokenCodeType.RESET,
    "registration": TokenCodeType.REGISTRATION,
}

ERROR_KEYS = {
    VerificationError.ABUSE_LIMIT_EXCEEDED: "abusedMessageService",
    VerificationError.DELIVERY_UNAVAILABLE: "sendSmsCodeError",
    VerificationError.NO_ONGOING_PROCESS: "noOngoingVerificationProcess",
    VerificationError.CODE_MISMATCH: "verificationCodeDoesNotMatch",
}
ERROR_STATUS = {
    VerificationError.ABUSE_LIMIT_EXCEEDED: 429,
    VerificationError.DELIVERY_UNAVAILABLE: 503,
    VerificationError.NO_ONGOING_PROCESS: 400,
    VerificationError.CODE_MISMATCH: 403,
}
INVALID_PHONE_NUMBER = "invalidPhoneNumber"


def canonical_phone_or_400(realm: str, raw: str | None) -> str:
    try:
        phone_number = canonicalize_phone_number(raw)
    except PhoneNumberParseError as exc:
        raise HTTPException(status_code=400, detail={"error": INVALID_PHONE_NUMBER, "message": str(exc)}) from exc
    if not matches_number_regex(realm, phone_number):
        raise HTTPException(
            status_code=400,
            detail={"error": INVALID_PHONE_NUMBER, "message": "Phone number does not match the realm pattern"},
        )
    return phone_number


def outcome_to_http(outcome: IssueOutcome | ValidationOutcome, *, phone_number: str | None = None) -> HTTPException:
    detail: dict[str, str] = {"error": ERROR_KEYS[outcome.error]}
    message = getattr(outcome, "detail", None)
    if message:
        detail["message"] = message
    if phone_number is not None:
        detail["phone_number"] = phone_number
    return HTTPException(status_code=ERROR_STATUS[outcome.error], detail=detail)


@router.get("/config", response_model=RealmPhoneConfig)
def get_phone_config(realm: str):
    return RealmPhoneConfig(
        realm=realm,
        number_regex=phone_number_regex(realm),
        default_region=default_phone_region(),
        duplicate_phone_allowed=is_duplicate_phone_allowed(realm),
        canonicalize=bool(settings.CANONICALIZE_PHONE_NUMBERS),
        token_expires_in=settings.TOKEN_EXPIRES_IN,
    )


@router.post("/{code_type}-code", response_model=CodeSent)
def send_code(
    realm: str,
    code_type: str,
    payload: CodeSend,
    origin: RequestOrigin = Depends(get_request_origin),
    db: Session = Depends(get_db),
):
    token_type = CODE_TYPES_BY_PATH.get(code_type)
    if token_type is None:
        raise HTTPException(status_code=404, detail="Unknown code type")
    phone_number = canonical_phone_or_400(realm, payload.phone_number)

    verification = build_phone_verification(db, realm, origin=origin)
    outcome = verification.issuer.send_code(phone_number, token_type, payload.kind)
    if not outcome.ok:
        raise outcome_to_http(outcome)
    return CodeSent(expires_in=int(outcome.expires_in or 0))


@router.post("/verification-code/verify", response_model=PhoneVerified)
def verify_code(
    realm: str,
    payload: CodeVerify,
    account: User = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    phone_number = canonical_phone_or_400(realm, payload.phone_number)
    verification = build_phone_verification(db, realm)
    outcome = verification.validator.validate_code(account, phone_number, payload.code.strip(), TokenCodeType.VERIFY)
    if not outcome.ok:
        raise outcome_to_http(outcome)
    report = outcome.binding
    if report is not None and not report.complete:
        _LOG.warning(
            "Phone %s verified for account %s with pending remediation: failed=%s cleanup=%s",
            phone_number,
            account.id,
            report.failed_account_ids,
            report.cleanup_errors,
        )
    return PhoneVerified(
        phone_number=phone_number,
        evicted_accounts=len(report.evicted_account_ids) if report is not None else 0,
    )

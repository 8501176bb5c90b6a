from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.sms.verification_code import canonical_phone_or_400, outcome_to_http
from app.core.deps import get_current_account
from app.db.session import get_db
from app.models.user import User
from app.schemas.phone import CodeVerify, PhoneVerified
from app.services.phone_verification import build_phone_verification
from app.services.token_codes import TokenCodeType, VerificationError

router = APIRouter()


@router.post("/update-phone-number", response_model=PhoneVerified)
def update_phone_number(
    realm: str,
    payload: CodeVerify,
    account: User = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    phone_number = canonical_phone_or_400(realm, payload.phone_number)
    verification = build_phone_verification(db, realm)
    outcome = verification.validator.validate_code(account, phone_number, payload.code.strip(), TokenCodeType.VERIFY)
    if outcome.error == VerificationError.CODE_MISMATCH:
        # Keep the submitted number so the form can be re-rendered with it
        raise outcome_to_http(outcome, phone_number=phone_number)
    if not outcome.ok:
        raise outcome_to_http(outcome)
    evicted = len(outcome.binding.evicted_account_ids) if outcome.binding is not None else 0
    return PhoneVerified(phone_number=phone_number, evicted_accounts=evicted)

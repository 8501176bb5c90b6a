from fastapi import Depends, HTTPException, Path, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.http_hardening import request_origin
from app.core.security import decode_jwt
from app.db.session import get_db
from app.models.user import User
from app.services.account_store import SqlAccountStore
from app.services.token_codes import RequestOrigin

bearer = HTTPBearer(auto_error=False)

def get_account_claims(realm: str = Path(...), creds: HTTPAuthorizationCredentials = Depends(bearer)) -> dict:
    if not creds:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        claims = decode_jwt(creds.credentials, settings.ACCOUNT_JWT_SECRET)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")
    if claims.get("realm") != realm:
        raise HTTPException(status_code=403, detail="Token was issued for another realm")
    return claims

def get_current_account(
    realm: str = Path(...),
    claims: dict = Depends(get_account_claims),
    db: Session = Depends(get_db),
) -> User:
    account = SqlAccountStore(db).get_account(realm, str(claims.get("sub") or ""))
    if account is None:
        raise HTTPException(status_code=401, detail="Unknown account")
    return account

def get_request_origin(request: Request) -> RequestOrigin:
    origin = getattr(request.state, "origin", None)
    if isinstance(origin, RequestOrigin):
        return origin
    return request_origin(request)

from datetime import datetime, timedelta, timezone
from jose import jwt

ALGORITHM = "HS256"

def create_jwt(payload: dict, secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    data = payload.copy()
    data.update({"iat": int(now.timestamp()), "exp": int((now + expires_delta).timestamp())})
    return jwt.encode(data, secret, algorithm=ALGORITHM)

def create_account_token(*, account_id: str, realm_id: str, secret: str, expires_delta: timedelta) -> str:
    return create_jwt({"sub": account_id, "realm": realm_id}, secret, expires_delta)

def decode_jwt(token: str, secret: str) -> dict:
    return jwt.decode(token, secret, algorithms=[ALGORITHM])

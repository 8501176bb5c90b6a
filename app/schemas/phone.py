from pydantic import BaseModel, Field
from typing import Optional

from app.models.token_code import PHONE_NUMBER_MAX_LENGTH

class CodeSend(BaseModel):
    phone_number: str = Field(min_length=1, max_length=PHONE_NUMBER_MAX_LENGTH)
    kind: Optional[str] = Field(default=None, max_length=64)

class CodeSent(BaseModel):
    expires_in: int

class CodeVerify(BaseModel):
    phone_number: str = Field(min_length=1, max_length=PHONE_NUMBER_MAX_LENGTH)
    code: str = Field(min_length=1, max_length=16)

class PhoneVerified(BaseModel):
    status: str = "verified"
    phone_number: str
    evicted_accounts: int = 0

class RealmPhoneConfig(BaseModel):
    realm: str
    number_regex: Optional[str] = None
    default_region: Optional[str] = None
    duplicate_phone_allowed: bool = False
    canonicalize: bool = False
    token_expires_in: int

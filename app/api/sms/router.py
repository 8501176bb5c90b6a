from fastapi import APIRouter
from app.api.sms import verification_code, update_phone_number

router = APIRouter()
router.include_router(verification_code.router, tags=["PhoneVerification"])
router.include_router(update_phone_number.router, tags=["PhoneVerification"])

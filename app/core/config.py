from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "phone-verification"

    ACCOUNT_JWT_SECRET: str = "change_me_account"

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8081"

    DATABASE_URL: str

    # Verification codes
    TOKEN_EXPIRES_IN: int = 60  # seconds
    HOUR_MAXIMUM: int = 3

    # Realm phone policy; REALM_* maps override the global value per realm
    DUPLICATE_PHONE: bool = False
    REALM_DUPLICATE_PHONE: Dict[str, bool] = {}
    NUMBER_REGEX: str = ""
    REALM_NUMBER_REGEX: Dict[str, str] = {}
    PHONE_REGION: str = ""
    CANONICALIZE_PHONE_NUMBERS: bool = False

    SMS_PROVIDER: str = "dummy"  # dummy | smsaero | bulksms
    SMSAERO_EMAIL: str = ""
    SMSAERO_API_KEY: str = ""
    BULKSMS_URL: str = "https://api.bulksms.com/v1/messages"
    BULKSMS_USERNAME: str = ""
    BULKSMS_PASSWORD: str = ""
    BULKSMS_ROUTING_GROUP: str = "STANDARD"
    BULKSMS_TIMEOUT_SECONDS: float = 10.0
    OTP_SMS_TEMPLATE: str = "{code} is your {purpose} code, valid for {minutes} minutes"
    OTP_SMS_KIND_TEMPLATES: Dict[str, str] = {}

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()

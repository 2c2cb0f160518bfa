import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from dotenv import load_dotenv

# Session lifetime per entry point. The flows historically disagreed
# (7 days on signup, 1 day on login, 24 hours on admin login); each one
# is configurable through TOKEN_EXPIRY_<FLOW>_HOURS.
TOKEN_EXPIRY: Dict[str, timedelta] = {
    "register": timedelta(days=7),
    "register_admin": timedelta(days=1),
    "login": timedelta(days=1),
    "admin_login": timedelta(hours=24),
    "refresh": timedelta(days=1),
}


def _token_expiry_from_env() -> Dict[str, timedelta]:
    table = dict(TOKEN_EXPIRY)
    for flow in table:
        raw = os.getenv(f"TOKEN_EXPIRY_{flow.upper()}_HOURS")
        if raw:
            table[flow] = timedelta(hours=float(raw))
    return table


@dataclass
class Settings:
    database_url: Optional[str] = None
    database_name: str = "trybee"
    jwt_secret: str = "devsecret"
    environment: str = "production"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    upload_dir: str = "uploads"
    frontend_url: str = "http://localhost:3000"
    admin_registration_key: Optional[str] = None
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    resend_api_key: Optional[str] = None
    mail_from: str = "Trybee Support <support@trybee.com>"
    admin_email: str = "support@trybee.com"
    bcrypt_rounds: int = 12
    reset_token_ttl: timedelta = timedelta(hours=1)
    token_expiry: Dict[str, timedelta] = field(default_factory=lambda: dict(TOKEN_EXPIRY))

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def cloudinary_configured(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)

    def expiry_for(self, flow: str) -> timedelta:
        return self.token_expiry.get(flow, TOKEN_EXPIRY["login"])

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME", "trybee"),
            jwt_secret=os.getenv("JWT_SECRET", "devsecret"),
            environment=os.getenv("ENVIRONMENT", "production"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            admin_registration_key=os.getenv("ADMIN_REGISTRATION_KEY"),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
            resend_api_key=(os.getenv("RESEND_API_KEY") or "").strip() or None,
            mail_from=os.getenv("MAIL_FROM", "Trybee Support <support@trybee.com>"),
            admin_email=os.getenv("ADMIN_EMAIL", "support@trybee.com"),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
            reset_token_ttl=timedelta(minutes=int(os.getenv("RESET_TOKEN_TTL_MINUTES", "60"))),
            token_expiry=_token_expiry_from_env(),
        )

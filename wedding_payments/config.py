import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

from wedding_payments.exceptions import ConfigurationError

# Force-load .env (Windows-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

REQUIRED = {
    "chapa_secret_key": "CHAPA_SECRET_KEY",
    "webhook_secret": "CHAPA_WEBHOOK_SECRET",
    "callback_base_url": "CALLBACK_BASE_URL",
    "return_url": "RETURN_URL",
}


@dataclass(frozen=True)
class Settings:
    chapa_secret_key: str
    webhook_secret: str
    callback_base_url: str
    return_url: str
    chapa_base_url: str = "https://api.chapa.co/v1"
    chapa_timeout: float = 10.0
    currency: str = "ETB"
    admin_business_name: str = "Wedding Planning Platform"
    admin_account_name: str = "Wedding Planning Admin"
    admin_bank_code: str = "946"
    admin_account_number: str = "1000000000"
    jwt_secret: str = ""
    log_level: str = "INFO"

    @property
    def callback_url(self) -> str:
        return self.callback_base_url.rstrip("/") + "/payment/webhook"

    def validate(self) -> None:
        """Raise ConfigurationError naming every missing required variable."""
        missing = [env for field, env in REQUIRED.items() if not getattr(self, field)]
        if missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(missing),
                context={"missing": missing},
            )


def load_settings() -> Settings:
    # Not cached: values follow the current environment
    return Settings(
        chapa_secret_key=os.getenv("CHAPA_SECRET_KEY", ""),
        webhook_secret=os.getenv("CHAPA_WEBHOOK_SECRET", ""),
        callback_base_url=os.getenv("CALLBACK_BASE_URL", ""),
        return_url=os.getenv("RETURN_URL", ""),
        chapa_base_url=os.getenv("CHAPA_BASE_URL", "https://api.chapa.co/v1"),
        chapa_timeout=float(os.getenv("CHAPA_TIMEOUT_SECONDS", "10")),
        currency=os.getenv("CHAPA_CURRENCY", "ETB"),
        admin_business_name=os.getenv("ADMIN_BUSINESS_NAME", "Wedding Planning Platform"),
        admin_account_name=os.getenv("ADMIN_ACCOUNT_NAME", "Wedding Planning Admin"),
        admin_bank_code=os.getenv("ADMIN_BANK_CODE", "946"),
        admin_account_number=os.getenv("ADMIN_ACCOUNT_NUMBER", "1000000000"),
        jwt_secret=os.getenv("JWT_SECRET", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )

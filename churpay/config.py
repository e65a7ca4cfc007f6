from dataclasses import dataclass
from typing import FrozenSet

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_host: str = "0.0.0.0"
    app_port: int = 5000
    env: str = "development"
    log_level: str = "INFO"

    database_url: str
    service_api_key: str
    cors_origins: str = ""

    frontend_url: str = "http://localhost:5173"
    backend_url: str = "http://localhost:5000"

    payfast_merchant_id: str = ""
    payfast_merchant_key: str = ""
    payfast_passphrase: str = ""
    payfast_mode: str = "sandbox"
    payfast_validate_timeout: float = 10.0
    # comma separated; PayFast's shared sandbox merchant signs without a passphrase
    payfast_no_passphrase_merchant_ids: str = "10000100"
    payfast_item_name: str = "Churpay Top Up"

    mail_smtp_host: str = ""
    mail_smtp_port: int = 587
    mail_username: str = ""
    mail_password: str = ""
    mail_from_address: str = ""
    mail_from_name: str = "Churpay"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()


def _split(value: str) -> FrozenSet[str]:
    return frozenset(v.strip() for v in value.split(",") if v.strip())


@dataclass(frozen=True)
class PayFastConfig:
    """Gateway credentials and endpoints, passed explicitly to every component."""

    merchant_id: str
    merchant_key: str = ""
    passphrase: str = ""
    mode: str = "sandbox"
    validate_timeout: float = 10.0
    no_passphrase_merchant_ids: FrozenSet[str] = frozenset()
    item_name: str = "Churpay Top Up"
    return_url: str = ""
    cancel_url: str = ""
    notify_url: str = ""

    @classmethod
    def from_settings(cls, s: Settings) -> "PayFastConfig":
        return cls(
            merchant_id=s.payfast_merchant_id.strip(),
            merchant_key=s.payfast_merchant_key.strip(),
            passphrase=s.payfast_passphrase,
            mode=s.payfast_mode.strip().lower() or "sandbox",
            validate_timeout=s.payfast_validate_timeout,
            no_passphrase_merchant_ids=_split(s.payfast_no_passphrase_merchant_ids),
            item_name=s.payfast_item_name,
            return_url=f"{s.frontend_url.rstrip('/')}/payfast/return",
            cancel_url=f"{s.frontend_url.rstrip('/')}/payfast/cancel",
            notify_url=f"{s.backend_url.rstrip('/')}/api/payfast/ipn",
        )

    @property
    def is_live(self) -> bool:
        return self.mode == "live"

    @property
    def host(self) -> str:
        return "https://www.payfast.co.za" if self.is_live else "https://sandbox.payfast.co.za"

    @property
    def process_url(self) -> str:
        return f"{self.host}/eng/process"

    @property
    def validate_url(self) -> str:
        return f"{self.host}/eng/query/validate"

    @property
    def signing_passphrase(self) -> str:
        # test merchants are configured without a passphrase on the gateway side
        if self.merchant_id in self.no_passphrase_merchant_ids:
            return ""
        return self.passphrase

    @property
    def is_configured(self) -> bool:
        return bool(self.merchant_id and self.merchant_key)


payfast_config = PayFastConfig.from_settings(settings)

from pydantic_settings import BaseSettings
from typing import List, Optional
from functools import lru_cache
import os


class Settings(BaseSettings):
    # Logging
    log_level: str = "INFO"

    # CORS
    cors_allow_origins: str = os.getenv("ALLOWED_ORIGINS", "*")

    # Public base URL (barcode domain)
    public_base_url: str = os.getenv("PUBLIC_BASE_URL", "https://your-api-domain.com")

    # Pass defaults
    organization_name: str = "Your Organization"
    pass_template_dir: str = os.getenv(
        "PASS_TEMPLATE_DIR",
        os.path.join(os.path.dirname(os.path.abspath(__file__)), "models", "eventTicket.pass"),
    )
    serial_nonce_enabled: bool = False

    # Platform switches
    apple_wallet_enabled: bool = True
    google_wallet_enabled: bool = True

    # Apple Wallet signing
    apple_cert_directory: str = os.getenv("APPLE_CERT_DIRECTORY", "certificates")
    apple_cert_password: str = ""
    apple_wallet_cert_p12_path: Optional[str] = None
    apple_pass_type_id: str = ""
    apple_team_id: str = ""
    apple_cert_bootstrap: bool = False

    # Google Wallet
    google_wallet_issuer_id: str = ""
    google_wallet_class_id: str = "generic-pass"
    google_wallet_issuer_name: str = ""
    google_wallet_service_account_path: str = os.path.join("keys", "service-account.json")
    google_wallet_service_account_json: Optional[str] = None
    google_wallet_api_base: str = "https://walletobjects.googleapis.com/walletobjects/v1"
    google_wallet_save_url: str = "https://pay.google.com/gp/v/save/"
    google_wallet_origins: List[str] = []
    google_wallet_http_timeout_s: float = 30.0

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()


import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="LEASEBILL_", extra="ignore")

    db_url: str = "sqlite:///leasebill.db"

    log_level: str = "INFO"
    log_json: bool = False

    timezone: str = "UTC"

    invoice_prefix: str = "INV"
    credit_note_prefix: str = "CN"
    default_payment_term_days: int = 0

    run_max_workers: int = 4
    run_error_summary_limit: int = 10
    generation_max_retries: int = 3


settings = Settings()

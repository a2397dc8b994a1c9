from typing import List, Literal

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = "LuminaMinutes API"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    log_file: str | None = None
    allowed_hosts: List[str] = ["*"]

    # Generative completion provider
    llm_provider: Literal["gemini", "openai"] = "gemini"
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 30.0

    # Email relay
    email_provider: Literal["smtp", "brevo"] = "smtp"
    email_user: str | None = None
    email_app_password: str | None = None
    email_sender_name: str = "LuminaMinutes"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_timeout_seconds: float = 30.0
    brevo_api_key: str | None = None

    # Summary cache
    cache_ttl_seconds: float = 300.0
    cache_sweep_threshold: int = 100

    class Config:
        env_file = ".env"

settings = Settings()

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://localhost:5432/corex"
    default_tz: str = "UTC"
    kernel_api_key: str | None = None
    create_schema: bool = False  # Apply CREATE TABLE IF NOT EXISTS on startup

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # "text" | "json"

    # Progress windows
    week_start: int = 6  # Python weekday numbering; 6 = Sunday
    progress_band_pct: float = 25.0  # Progress emails fire when crossing a new band

    # Invitation / share codes
    code_length: int = 8
    code_ttl_days: int = 7
    code_max_attempts: int = 10

    # Email (notification sink)
    email_enabled: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_use_tls: bool = True
    smtp_username: str | None = None
    smtp_password: str | None = None
    email_from: str | None = None  # Falls back to smtp_username
    app_name: str = "CoreX"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()

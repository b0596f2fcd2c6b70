"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with defaults and env var overrides."""

    # Database
    database_url: str = "sqlite:///./parcelflow.db"
    use_in_memory_db: bool = False
    memory_store_capacity: int = 100_000

    # App
    app_env: str = "development"
    app_port: int = 8000
    log_level: str = "INFO"

    # Ingestion
    order_id_prefix: str = "PF"

    # Lifecycle
    default_eta_minutes: int = 30
    reject_repeat_delivery_confirmation: bool = False

    # Notifications (WhatsApp Business API)
    notifications_enabled: bool = False
    notification_workers: int = 4
    whatsapp_api_url: str = "https://graph.facebook.com/v18.0"
    whatsapp_phone_number_id: str = ""
    whatsapp_access_token: str = ""
    whatsapp_language: str = "ro"
    whatsapp_dry_run: bool = True
    whatsapp_timeout_seconds: float = 5.0

    # Customer-facing links embedded in notifications
    tracking_base_url: str = "https://parcelflow.example/track"
    feedback_base_url: str = "https://parcelflow.example/feedback"
    reschedule_base_url: str = "https://parcelflow.example/reschedule"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()

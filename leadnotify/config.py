"""Lead notification service configuration via pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class LeadNotifySettings(BaseSettings):
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///leadnotify.db"
    echo_sql: bool = False
    app_title: str = "Lead Notifications"
    log_level: str = "INFO"
    log_json: bool | None = None  # None = JSON only in production

    frontend_url: str = "http://localhost:8080"
    security_fail_closed: bool = False
    admin_api_key: str = ""

    # Slack (optional, chat-ops webhook)
    slack_webhook_url: str | None = None

    # Telegram (optional, bot messaging)
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    telegram_api_base: str = "https://api.telegram.org"

    # SendGrid (optional, primary email)
    sendgrid_api_key: str | None = None
    sendgrid_from_email: str | None = None
    sendgrid_from_name: str | None = None

    # SMTP (optional, fallback email)
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_ssl: bool = False
    smtp_starttls: bool = True
    smtp_from_email: str | None = None
    smtp_timeout_seconds: float = 30.0

    # Comma-separated operator mailboxes that receive every lead email.
    notify_email_recipients: str = "info@truenester.com,truenester4u@gmail.com"
    notify_channel_timeout_seconds: float = 10.0

    # Notification worker
    worker_enabled: bool = True
    worker_poll_interval_seconds: float = 5.0
    worker_batch_size: int = 10
    worker_max_retries: int = 3
    worker_retry_backoff_seconds: float = 1.0
    worker_lease_seconds: float = 60.0
    worker_shutdown_grace_seconds: float = 30.0

    # Rate limiting (requests per window, per client key)
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: float = 60.0
    rate_limit_sweep_interval_seconds: float = 60.0
    rate_limit_general_max: int = 60
    rate_limit_lead_submission_max: int = 10
    rate_limit_contact_form_max: int = 5
    rate_limit_admin_max: int = 120
    rate_limit_export_max: int = 5

    model_config = {"env_prefix": "LN_", "env_file": ".env", "extra": "ignore"}

    @property
    def admin_conversations_url(self) -> str:
        return f"{self.frontend_url.rstrip('/')}/admin/conversations"

    @property
    def email_recipients(self) -> list[str]:
        return [item.strip() for item in self.notify_email_recipients.split(",") if item.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}

    @property
    def use_json_logs(self) -> bool:
        if self.log_json is None:
            return self.is_production
        return self.log_json


settings = LeadNotifySettings()

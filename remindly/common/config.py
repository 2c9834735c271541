"""Central environment-driven settings for the notification engine.

The process loads this once at startup. Caps, windows, channel order and
provider credentials are all controlled by environment variables (see
`.env.example`).
"""

from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CHANNEL_ORDER: dict[str, list[str]] = {
    "appointment_confirmation": ["sms", "sms_backup", "email"],
    "appointment_reminder": ["sms", "sms_backup", "email"],
    "appointment_cancellation": ["sms", "email"],
    "payment_confirmation": ["email", "sms"],
    "payment_reminder": ["email", "sms"],
}


@dataclass(frozen=True)
class QuotaPolicy:
    """Send caps and unit cost for one channel."""

    daily_cap: int
    monthly_cap: int
    cost_per_message: float = 0.0


class Settings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "remindly"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./remindly.db"
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"

    default_country_code: str = "1"
    business_name: str = "the studio"
    business_timezone: str = "UTC"

    reminder_window_start_hours: float = 23.0
    reminder_window_end_hours: float = 25.0
    scan_interval_seconds: float = 3600.0
    scan_concurrency: int = 4

    provider_timeout_seconds: float = 10.0
    retry_max_attempts: int = 3
    retry_backoff_strategy: str = "linear"
    retry_backoff_base_seconds: float = 1.0

    sms_daily_cap: int = 100
    sms_monthly_cap: int = 500
    sms_cost_per_message: float = 0.00645
    sms_backup_daily_cap: int = 50
    sms_backup_monthly_cap: int = 250
    sms_backup_cost_per_message: float = 0.003
    email_daily_cap: int = 300
    email_monthly_cap: int = 9000
    email_cost_per_message: float = 0.0

    channel_order: dict[str, list[str]] = DEFAULT_CHANNEL_ORDER

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_messaging_service_sid: str = ""
    twilio_from_number: str = ""
    twilio_api_url: str = "https://api.twilio.com/2010-04-01"

    textbelt_api_key: str = ""
    textbelt_url: str = "https://textbelt.com/text"

    brevo_api_key: str = ""
    brevo_sender_email: str = ""
    brevo_sender_name: str = "Appointments"
    brevo_api_url: str = "https://api.brevo.com/v3/smtp/email"

    appointments_api_url: str = "http://appointments:8000"
    appointments_api_key: str = ""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def quota_policies(self) -> dict[str, QuotaPolicy]:
        """Per-channel caps keyed by channel name."""

        return {
            "sms": QuotaPolicy(self.sms_daily_cap, self.sms_monthly_cap, self.sms_cost_per_message),
            "sms_backup": QuotaPolicy(
                self.sms_backup_daily_cap,
                self.sms_backup_monthly_cap,
                self.sms_backup_cost_per_message,
            ),
            "email": QuotaPolicy(self.email_daily_cap, self.email_monthly_cap, self.email_cost_per_message),
        }


settings = Settings()

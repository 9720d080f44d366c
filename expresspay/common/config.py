"""Central environment-driven settings for the checkout service.

The process loads this once at startup. Provider credentials, endpoint and
registry limits are controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "checkout"
    log_level: str = "INFO"
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    admin_api_key: str = "dev-secret"

    nvp_endpoint_url: str = "https://api-3t.sandbox.paypal.com/nvp"
    nvp_user: str
    nvp_password: str
    nvp_signature: str
    nvp_version: str = "63.0"
    nvp_timeout_seconds: float = 10.0

    checkout_return_url: str = "http://localhost:8000/checkout/return"
    checkout_cancel_url: str = "http://localhost:8000/checkout/cancel"
    checkout_currency: str = "USD"
    checkout_useraction: str = "commit"
    checkout_sandbox: bool = True

    max_active_transactions: int = 1000
    max_transaction_minutes: int = 180
    max_transactions_per_origin: int = 10
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()

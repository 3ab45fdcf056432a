"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
Credentials are checked when the operation that needs them runs, not at startup.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

PAYPAL_LIVE_BASE_URL = "https://api-m.paypal.com"
PAYPAL_SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "AutoNest API"
    api_version: str = "0.1.0"
    api_description: str = "Credit ledger, PayPal top-ups and workflow tools for AutoNest"
    cors_origins: str = "*"  # Comma-separated

    # Identity - Firebase Authentication
    firebase_project_id: str = ""

    # Payment Gateway - PayPal
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_environment: str = "sandbox"  # "live" or "sandbox"

    # Credits
    default_credits: int = 500  # Granted on first sign-in
    credits_per_dollar: int = 100

    # Workflow tools - n8n webhooks
    keyword_tool_url: str = "https://n8n.autonest.site/webhook/keyword-suggestions"
    blog_tool_url: str = "https://n8n-service-g3uy.onrender.com/webhook/blog-factory-form"
    audio_tool_url: str = "https://n8n.autonest.site/webhook/transcribe"
    linkedin_tool_url: str = "https://n8n.autonest.site/webhook/generate-linkedin-post"

    keyword_tool_cost: int = 1
    blog_tool_cost: int = 5
    audio_tool_cost: int = 10
    linkedin_tool_cost: int = 2

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    tool_timeout_seconds: float = 120.0  # Webhook tools run LLM pipelines

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "autonest-api"
    trace_sample_rate: float = 1.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def paypal_base_url(self) -> str:
        """PayPal REST base URL for the configured environment."""
        if self.paypal_environment.lower() == "live":
            return PAYPAL_LIVE_BASE_URL
        return PAYPAL_SANDBOX_BASE_URL

    @property
    def allowed_origins(self) -> list[str]:
        """CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings

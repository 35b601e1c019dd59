# courier_dispatch/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Restaurant backend (orders + delivery endpoints)
    api_url: str = "http://localhost:3000/api"
    restaurant_id: str | None = None
    api_token: str | None = None  # Bearer token sent to the backend (optional)

    # Delivery policy (initial values; updatable at runtime via PUT /delivery/policy)
    # "doordash" / "uber" - DaaS providers, dispatched through the backend
    # "self" - restaurant's own drivers, never auto-dispatched
    # "none" - delivery disabled
    delivery_provider: Literal["doordash", "uber", "self", "none"] = "none"
    auto_dispatch: bool = False

    # Delivery gateway HTTP timeouts
    gateway_timeout_seconds: float = 20.0
    gateway_connect_timeout_seconds: float = 5.0

    # Order polling (fallback when order events are not pushed)
    order_poll_enabled: bool = True
    order_poll_interval_seconds: float = 5.0
    order_poll_limit: int = 50

    # Security
    terminal_token: str | None = None  # Protects mutating routes and /metrics
    allowed_origins: list[str] = ["*"]

    # Feature Flags
    enable_request_logging: bool = True
    enable_metrics: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def restaurant_api_base(self) -> str | None:
        """Base URL for restaurant-scoped backend endpoints"""
        if not self.restaurant_id:
            return None
        return f"{self.api_url.rstrip('/')}/restaurant/{self.restaurant_id}"

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []
        required_fields = [
            ("api_url", self.api_url),
            ("restaurant_id", self.restaurant_id),
            ("terminal_token", self.terminal_token),
        ]

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if not s.restaurant_id:
        warnings.append("restaurant_id is not set (order polling and delivery calls are disabled).")

    if not s.terminal_token:
        warnings.append("terminal_token is not set (dispatch and policy routes are unauthenticated).")

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.auto_dispatch and s.delivery_provider not in ("doordash", "uber"):
        warnings.append(
            f"auto_dispatch=True but delivery_provider={s.delivery_provider!r} "
            "is not a DaaS provider (nothing will be auto-dispatched)."
        )

    if s.api_url.startswith("http://") and s.is_production:
        warnings.append("prod: api_url is not HTTPS (delivery credentials travel in clear text).")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)

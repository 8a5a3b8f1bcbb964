"""Centralised configuration helper.

All environment access goes through a single :class:`Settings` instance
returned by :func:`get_settings`.  A bespoke dataclass keeps the service free
of a *pydantic-settings* dependency while still covering every knob the
widget backend needs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# ``_REPO_ROOT`` is the directory holding ``pyproject.toml``; this file lives
# at ``launchpad/config/__init__.py``.
_REPO_ROOT = Path(__file__).resolve().parents[2]

DEFAULT_CRM_API_BASE = "https://services.leadconnectorhq.com"
DEFAULT_CRM_AUTHORIZE_URL = "https://marketplace.gohighlevel.com/oauth/chooselocation"
DEFAULT_CRM_SCOPES = (
    "locations.readonly courses.readonly products.readonly "
    "payments/integration.readonly oauth.readonly oauth.write"
)


def _truthy(value: str | None) -> bool:  # noqa: D401
    """Return *True* when *value* looks like an affirmative string."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:  # noqa: D401
    """Lightweight settings container populated from environment variables."""

    # Runtime flags -----------------------------------------------------
    testing: bool
    environment: str
    log_level: str

    # Database ---------------------------------------------------------
    database_url: str

    # Cryptography -----------------------------------------------------
    fernet_secret: Any

    # CRM OAuth application ---------------------------------------------
    crm_client_id: str | None
    crm_client_secret: str | None
    crm_redirect_uri: str | None
    crm_scopes: str
    crm_api_base: str
    crm_token_url: str
    crm_authorize_url: str
    crm_api_version: str

    # Timing ------------------------------------------------------------
    http_timeout_seconds: float
    token_expiry_buffer_seconds: int
    sse_keepalive_seconds: float

    # Analytics ---------------------------------------------------------
    userpilot_api_key: str | None
    userpilot_stage_api_key: str | None
    userpilot_api_base: str

    # Misc
    public_base_url: str | None
    allowed_cors_origins: str
    admin_api_key: str | None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def userpilot_key(self) -> str | None:
        """Return the tracking key for the current environment.

        Production always uses the primary key; every other environment
        prefers the stage key and falls back to the primary one.
        """
        if self.is_production:
            return self.userpilot_api_key
        return self.userpilot_stage_api_key or self.userpilot_api_key

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_cors_origins.split(",") if o.strip()]

    # Helper for tests to override values at runtime -------------------
    def override(self, **kwargs: Any) -> None:  # pragma: no cover
        for key, value in kwargs.items():
            if not hasattr(self, key):  # pragma: no cover
                raise AttributeError(f"Settings has no attribute '{key}'")
            setattr(self, key, value)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


def _load_settings() -> Settings:  # noqa: D401
    """Populate :class:`Settings` from environment variables."""

    testing = _truthy(os.getenv("TESTING"))

    env_path = _REPO_ROOT / ".env"
    if env_path.exists() and not testing:
        # Explicit process env wins over the file.
        load_dotenv(env_path, override=False)

    api_base = os.getenv("CRM_API_BASE", DEFAULT_CRM_API_BASE).rstrip("/")

    return Settings(
        testing=testing,
        environment=os.getenv("ENVIRONMENT", "development"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./launchpad.db" if testing else ""),
        fernet_secret=os.getenv("FERNET_SECRET"),
        crm_client_id=os.getenv("CRM_CLIENT_ID"),
        crm_client_secret=os.getenv("CRM_CLIENT_SECRET"),
        crm_redirect_uri=os.getenv("CRM_REDIRECT_URI"),
        crm_scopes=os.getenv("CRM_SCOPES", DEFAULT_CRM_SCOPES),
        crm_api_base=api_base,
        crm_token_url=os.getenv("CRM_TOKEN_URL", f"{api_base}/oauth/token"),
        crm_authorize_url=os.getenv("CRM_AUTHORIZE_URL", DEFAULT_CRM_AUTHORIZE_URL),
        crm_api_version=os.getenv("CRM_API_VERSION", "2021-07-28"),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "10")),
        token_expiry_buffer_seconds=int(os.getenv("TOKEN_EXPIRY_BUFFER_SECONDS", "300")),
        sse_keepalive_seconds=float(os.getenv("SSE_KEEPALIVE_SECONDS", "25")),
        userpilot_api_key=os.getenv("USERPILOT_API_KEY"),
        userpilot_stage_api_key=os.getenv("USERPILOT_STAGE_API_KEY"),
        userpilot_api_base=os.getenv("USERPILOT_API_BASE", "https://api.userpilot.io").rstrip("/"),
        public_base_url=(os.getenv("PUBLIC_BASE_URL") or "").rstrip("/") or None,
        allowed_cors_origins=os.getenv("ALLOWED_CORS_ORIGINS", "*"),
        admin_api_key=os.getenv("ADMIN_API_KEY"),
    )


# ------------------------------------------------------------------
# Runtime validation: fail fast when *required* secrets are missing.
# ------------------------------------------------------------------


def _validate_required(settings: Settings) -> None:  # noqa: D401
    """Abort startup when mandatory configuration is missing."""

    if settings.testing:
        return

    missing_vars = []

    if not settings.database_url:
        missing_vars.append("DATABASE_URL")

    if not settings.fernet_secret:
        missing_vars.append("FERNET_SECRET")

    if missing_vars:
        raise RuntimeError(
            f"CRITICAL: Missing required environment variables: {', '.join(missing_vars)}\n"
            f"Set these in your .env file or deployment environment."
        )


def get_settings() -> Settings:  # noqa: D401
    """Return :class:`Settings` instance loaded from environment."""

    settings = _load_settings()
    _validate_required(settings)
    return settings


__all__ = [
    "Settings",
    "get_settings",
]

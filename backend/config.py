"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No connection-manager logic
- No behavioral constants (see policy.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from policy import (
    EVOLUTION_FUNCTION_NAME,
    GATEWAY_TIMEOUT_S_DEFAULT,
    LINK_RETAIN_AFTER_LAST_OBSERVER_S_DEFAULT,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the panel registry and gateway construction.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Messaging gateway
    # ------------------------------------------------------------------

    # "direct": talk to the Evolution API ourselves
    # "function": go through the hosted evolution-whatsapp function
    gateway_mode: str
    evolution_api_url: str | None
    evolution_api_key: str | None
    gateway_timeout_s: float

    # ------------------------------------------------------------------
    # Managed backend
    # ------------------------------------------------------------------

    supabase_url: str | None
    supabase_key: str | None
    supabase_jwt_secret: str | None
    supabase_functions_url: str | None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Panel lifecycle
    # ------------------------------------------------------------------

    link_retain_after_last_observer_s: float

    @property
    def evolution_function_url(self) -> str | None:
        """Full URL of the hosted evolution-whatsapp function."""
        base = self.supabase_functions_url
        if not base and self.supabase_url:
            base = f"{self.supabase_url.rstrip('/')}/functions/v1"
        if not base:
            return None
        return f"{base.rstrip('/')}/{EVOLUTION_FUNCTION_NAME}"

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Missing credentials are left as None; app construction decides
        which ones are required for the selected gateway mode.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            gateway_mode=os.environ.get("GATEWAY_MODE", "direct").lower(),
            evolution_api_url=os.environ.get("EVOLUTION_API_URL"),
            evolution_api_key=os.environ.get("EVOLUTION_API_KEY"),
            gateway_timeout_s=float(
                os.environ.get("GATEWAY_TIMEOUT_S", GATEWAY_TIMEOUT_S_DEFAULT)
            ),

            supabase_url=os.environ.get("SUPABASE_URL"),
            supabase_key=os.environ.get("SUPABASE_KEY"),
            supabase_jwt_secret=os.environ.get("SUPABASE_JWT_SECRET"),
            supabase_functions_url=os.environ.get("SUPABASE_FUNCTIONS_URL"),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            link_retain_after_last_observer_s=float(
                os.environ.get(
                    "LINK_RETAIN_AFTER_LAST_OBSERVER_S",
                    LINK_RETAIN_AFTER_LAST_OBSERVER_S_DEFAULT,
                )
            ),
        )

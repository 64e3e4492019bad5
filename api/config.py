"""
Unified Configuration Module for CEP Automation

All configuration settings are centralized here.
Import from this module: from api.config import config
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from core.automation import AutomationConfig
from core.fallback import EngineFallbackPolicy

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class AppConfig:
    """Unified application configuration."""

    # === Server Settings ===
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))
    DEBUG: bool = _env_bool("DEBUG", "false")
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # === CORS Settings ===
    CORS_ORIGINS: List[str] = field(default_factory=lambda: [
        origin.strip() for origin in
        os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ])

    # === Portal ===
    PORTAL_URL: str = os.getenv("PORTAL_URL", "https://www.banxico.org.mx/cep-scl/")
    BROWSER_HEADLESS: bool = _env_bool("BROWSER_HEADLESS", "true")

    # === CAPTCHA pause and engine fallback ===
    CAPTCHA_BASE_PAUSE_SECONDS: float = float(os.getenv("CAPTCHA_BASE_PAUSE_SECONDS", "10"))
    CAPTCHA_ESCALATED_PAUSE_SECONDS: float = float(os.getenv("CAPTCHA_ESCALATED_PAUSE_SECONDS", "20"))
    CAPTCHA_PAUSE_STEP_SECONDS: float = float(os.getenv("CAPTCHA_PAUSE_STEP_SECONDS", "15"))
    ENGINE_BACKOFF_SECONDS: float = float(os.getenv("ENGINE_BACKOFF_SECONDS", "5"))

    # === Phase retries ===
    UPLOAD_MAX_ATTEMPTS: int = int(os.getenv("UPLOAD_MAX_ATTEMPTS", "3"))
    QUERY_MAX_ATTEMPTS: int = int(os.getenv("QUERY_MAX_ATTEMPTS", "3"))
    UPLOAD_RETRY_DELAY_SECONDS: float = float(os.getenv("UPLOAD_RETRY_DELAY_SECONDS", "5"))
    QUERY_RETRY_DELAY_SECONDS: float = float(os.getenv("QUERY_RETRY_DELAY_SECONDS", "6"))

    # === Jobs ===
    # Outer bound on one job; 0 disables it
    JOB_DEADLINE_SECONDS: float = float(os.getenv("JOB_DEADLINE_SECONDS", "1800"))

    # === Supabase ===
    SUPABASE_URL: Optional[str] = os.getenv("SUPABASE_URL")
    SUPABASE_KEY: Optional[str] = os.getenv("SUPABASE_KEY")
    SUPABASE_SCHEMA: str = os.getenv("SUPABASE_SCHEMA", "public")
    PAYMENTS_TABLE: str = os.getenv("PAYMENTS_TABLE", "pagos_stp_raw")
    STORAGE_BUCKET: str = os.getenv("STORAGE_BUCKET", "cep-results")
    SIGNED_URL_TTL_SECONDS: int = int(os.getenv("SIGNED_URL_TTL_SECONDS", "604800"))  # 7 days

    # === Paths ===
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")

    @property
    def automation_config(self) -> AutomationConfig:
        """Settings for one engine attempt."""
        return AutomationConfig(
            portal_url=self.PORTAL_URL,
            headless=self.BROWSER_HEADLESS,
            upload_max_attempts=self.UPLOAD_MAX_ATTEMPTS,
            upload_retry_delay=self.UPLOAD_RETRY_DELAY_SECONDS,
            query_max_attempts=self.QUERY_MAX_ATTEMPTS,
            query_retry_delay=self.QUERY_RETRY_DELAY_SECONDS,
        )

    @property
    def fallback_policy(self) -> EngineFallbackPolicy:
        """Engine fallback settings. The engine order itself is fixed."""
        return EngineFallbackPolicy(
            base_delay=self.ENGINE_BACKOFF_SECONDS,
            base_pause=self.CAPTCHA_BASE_PAUSE_SECONDS,
            escalated_pause=self.CAPTCHA_ESCALATED_PAUSE_SECONDS,
            pause_step=self.CAPTCHA_PAUSE_STEP_SECONDS,
        )

    @property
    def job_deadline(self) -> Optional[float]:
        return self.JOB_DEADLINE_SECONDS or None

    def validate(self) -> List[str]:
        """Validate configuration and return list of missing required settings."""
        missing = []
        if not self.SUPABASE_URL:
            missing.append("SUPABASE_URL")
        if not self.SUPABASE_KEY:
            missing.append("SUPABASE_KEY")
        return missing


# Global config instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the application configuration."""
    return config

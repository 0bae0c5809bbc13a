"""
Unified Configuration Module for Missing Money Search

All configuration settings are centralized here.
Import from this module: from api.config import config
"""

import os
from typing import List, Optional
from dataclasses import dataclass, field


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class AppConfig:
    """Unified application configuration."""

    # === Server Settings ===
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))
    DEBUG: bool = _env_bool("DEBUG", "false")

    # === CORS Settings ===
    CORS_ORIGINS: List[str] = field(default_factory=lambda: [
        origin.strip() for origin in
        os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
        if origin.strip()
    ])
    CORS_ALLOW_CREDENTIALS: bool = True

    # === Concurrency ===
    MAX_CONCURRENT_BROWSERS: int = int(os.getenv("MAX_CONCURRENT_BROWSERS", "3"))
    QUEUE_TIMEOUT_SECONDS: float = float(os.getenv("QUEUE_TIMEOUT_SECONDS", "300"))

    # === Search Deadlines ===
    SEARCH_TIMEOUT_SECONDS: float = float(os.getenv("SEARCH_TIMEOUT_SECONDS", "300"))
    SEARCH_MAX_ATTEMPTS: int = int(os.getenv("SEARCH_MAX_ATTEMPTS", "2"))
    RETRY_BASE_DELAY_SECONDS: float = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "2.0"))

    # === Browser ===
    HEADLESS: bool = _env_bool("HEADLESS", "true")
    TARGET_URL: str = os.getenv("TARGET_URL", "https://missingmoney.com/app/claim-search")
    BROWSER_LAUNCH_TIMEOUT_SECONDS: float = float(os.getenv("BROWSER_LAUNCH_TIMEOUT_SECONDS", "60"))
    NAVIGATION_TIMEOUT_SECONDS: float = float(os.getenv("NAVIGATION_TIMEOUT_SECONDS", "30"))
    BROWSER_CLOSE_TIMEOUT_SECONDS: float = float(os.getenv("BROWSER_CLOSE_TIMEOUT_SECONDS", "5"))

    # === Challenge Solver (2captcha) ===
    TWOCAPTCHA_API_KEY: Optional[str] = os.getenv("TWOCAPTCHA_API_KEY")
    SOLVER_BASE_URL: str = os.getenv("SOLVER_BASE_URL", "https://api.2captcha.com")
    SOLVER_POLL_INTERVAL_SECONDS: float = float(os.getenv("SOLVER_POLL_INTERVAL_SECONDS", "3"))
    SOLVER_MAX_POLLS: int = int(os.getenv("SOLVER_MAX_POLLS", "40"))
    SOLVER_REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("SOLVER_REQUEST_TIMEOUT_SECONDS", "30"))
    CHALLENGE_SOLVE_TIMEOUT_SECONDS: float = float(os.getenv("CHALLENGE_SOLVE_TIMEOUT_SECONDS", "150"))
    CHALLENGE_GRACE_SECONDS: float = float(os.getenv("CHALLENGE_GRACE_SECONDS", "15"))

    # === Human-like Pacing ===
    # Multiplier for the random pauses between browser actions; 0 disables them.
    HUMAN_PACE: float = float(os.getenv("HUMAN_PACE", "1.0"))
    TYPING_DELAY_MS: int = int(os.getenv("TYPING_DELAY_MS", "50"))

    # === Results ===
    PLACEHOLDER_ON_EMPTY: bool = _env_bool("PLACEHOLDER_ON_EMPTY", "true")

    # === Paths ===
    DEBUG_ARTIFACTS_DIR: str = os.getenv("DEBUG_ARTIFACTS_DIR", "")
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def validate(self) -> List[str]:
        """Validate configuration and return list of problems."""
        problems = []

        if self.MAX_CONCURRENT_BROWSERS < 1:
            problems.append("MAX_CONCURRENT_BROWSERS must be at least 1")
        if self.SEARCH_MAX_ATTEMPTS < 1:
            problems.append("SEARCH_MAX_ATTEMPTS must be at least 1")
        if self.SEARCH_TIMEOUT_SECONDS <= 0:
            problems.append("SEARCH_TIMEOUT_SECONDS must be positive")
        if self.QUEUE_TIMEOUT_SECONDS <= 0:
            problems.append("QUEUE_TIMEOUT_SECONDS must be positive")
        if self.HUMAN_PACE < 0:
            problems.append("HUMAN_PACE must not be negative")

        return problems


# Global config instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the application configuration."""
    return config

"""
Runtime configuration
Reads settings from the environment (and a .env file when present)
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass
class Settings:
    """Pipeline settings"""
    checkpoint_dir: str = "checkpoints"
    catalog_path: str = "method_catalog.json"
    output_dir: str = "generated"
    pages_import: str = "../pages"
    headless: bool = True
    browser_ws_url: Optional[str] = None
    action_timeout_ms: int = 15000
    commit_retries: int = 3
    log_level: str = "INFO"
    slack_webhook_url: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """
        Build settings from environment variables

        Args:
            dotenv: Whether to load a .env file first

        Returns:
            Settings populated from CASEPILOT_* variables
        """
        if dotenv:
            load_dotenv()

        return cls(
            checkpoint_dir=os.getenv("CASEPILOT_CHECKPOINT_DIR", "checkpoints"),
            catalog_path=os.getenv("CASEPILOT_CATALOG_PATH", "method_catalog.json"),
            output_dir=os.getenv("CASEPILOT_OUTPUT_DIR", "generated"),
            pages_import=os.getenv("CASEPILOT_PAGES_IMPORT", "../pages"),
            headless=_env_bool("CASEPILOT_HEADLESS", True),
            browser_ws_url=os.getenv("CASEPILOT_BROWSER_WS_URL") or None,
            action_timeout_ms=_env_int("CASEPILOT_ACTION_TIMEOUT_MS", 15000),
            commit_retries=_env_int("CASEPILOT_COMMIT_RETRIES", 3),
            log_level=os.getenv("CASEPILOT_LOG_LEVEL", "INFO").upper(),
            slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL") or None,
        )

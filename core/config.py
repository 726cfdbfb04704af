"""Application configuration for Bubuverse Farm.

Central configuration module powered by Pydantic v2.  Settings are loaded from
environment variables (with ``.env`` file support) and an optional
``config/farm_config.json`` file.

Key exports:
    FarmSettings: Root settings model (instantiate once).
    BASE_DIR / CONFIG_DIR / LOGS_DIR: Canonical project paths.
"""

# pylint: disable=no-member

import json
import logging
from pathlib import Path
from typing import Any, Dict

from pydantic import TypeAdapter, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

CONFIG_DIR: Path = BASE_DIR / "config"
"""Directory containing runtime files (wallets, progress, proxies, UAs)."""

LOGS_DIR: Path = BASE_DIR / "logs"
"""Directory for log output files."""

logger: logging.Logger = logging.getLogger(__name__)


class FarmSettings(BaseSettings):
    """Root configuration model for Bubuverse Farm.

    All fields can be set via environment variables or a ``.env`` file.
    Values found in ``config/farm_config.json`` override the defaults
    during post-init (but never values passed explicitly to the
    constructor).

    Section overview:
        * **Core** -- log level, headless mode, page timeout.
        * **Remote** -- service base URL and session backend.
        * **Files** -- wallet, progress, proxy and user-agent paths.
        * **Pacing** -- inter-account, skip and inter-item delays.
        * **Energy** -- collection toggle and threshold.
        * **Performance** -- bounded account concurrency.
    """

    # Core
    log_level: str = "INFO"
    headless: bool = True
    # Navigation timeout in ms
    timeout: int = 60000

    # Remote service
    base_url: str = "https://bubuverse.fun"
    # Options: browser, http
    session_backend: str = "browser"
    # Seconds to let the landing page settle before harvesting cookies
    session_settle_seconds: float = 15.0

    # Files
    accounts_file: str = str(CONFIG_DIR / "wallet_sol.json")
    progress_file: str = str(CONFIG_DIR / "open.json")
    proxies_file: str = str(CONFIG_DIR / "proxy.txt")
    user_agents_file: str = str(CONFIG_DIR / "ua.txt")
    # Backup generations kept for every state file
    state_backups: int = 3
    # Size of the synthesized pool when ua.txt is missing or empty
    user_agent_pool_size: int = 1000

    # Pacing (seconds)
    account_delay_seconds: float = 3.0
    skip_delay_seconds: float = 1.0
    item_delay_seconds: float = 2.0
    # Random extra delay added to every pause
    pacing_jitter_seconds: float = 0.0

    # Energy collection after check-in
    collect_energy: bool = True
    # Collect only when pending energy is strictly above this value
    energy_collect_threshold: float = 0.0

    # Performance / Concurrency
    # 1 = strictly sequential
    max_concurrent_accounts: int = 1

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Merge ``config/farm_config.json`` into the settings."""
        self._load_farm_config_defaults()

    def _load_farm_config_defaults(self) -> None:
        """Load overrides from ``config/farm_config.json``.

        Only keys that name a known setting and that were not set
        explicitly (constructor or environment) are applied.  Values are
        validated against the field type; invalid JSON and invalid values
        are logged and ignored.
        """
        config_path: Path = CONFIG_DIR / "farm_config.json"
        if not config_path.exists():
            return

        try:
            data: Dict[str, Any] = json.loads(
                config_path.read_text(encoding="utf-8")
            )
        except Exception as exc:
            logger.warning(
                "Failed to load farm_config.json: %s", exc
            )
            return

        if not isinstance(data, dict):
            logger.warning("farm_config.json must contain an object")
            return

        for key, value in data.items():
            field = type(self).model_fields.get(key)
            if field is None:
                logger.debug("Ignoring unknown config key: %s", key)
                continue
            if key in self.model_fields_set:
                continue
            try:
                value = TypeAdapter(field.annotation).validate_python(value)
            except ValidationError as exc:
                logger.warning(
                    "Ignoring invalid farm_config.json value for %s: %s",
                    key, exc.errors(include_input=False)[0]["msg"],
                )
                continue
            setattr(self, key, value)

    @property
    def effective_concurrency(self) -> int:
        """Concurrency clamped to at least one worker."""
        return max(1, int(self.max_concurrent_accounts))

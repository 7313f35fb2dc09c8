"""Application configuration for Rewardbot.

Central configuration module powered by Pydantic v2.  Settings are loaded from
environment variables (with ``.env`` file support) and an optional
``config/claimer_config.json`` file.

Key exports:
    ClaimerSettings: Root settings model (instantiate once at startup).
    RewardSection: One reward section of the shop page to sweep.
    Registration: A registered account under management.
    RegistrationStatus: Lifecycle states of a registration.
    BASE_DIR / CONFIG_DIR / LOGS_DIR: Canonical project paths.
"""

# pylint: disable=no-member

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

CONFIG_DIR: Path = BASE_DIR / "config"
"""Directory containing runtime configuration files (roster, overrides)."""

LOGS_DIR: Path = BASE_DIR / "logs"
"""Directory for log output files."""

logger: logging.Logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegistrationStatus(str, Enum):
    """Lifecycle states of a registered account.

    Members:
        ACTIVE: Included in every claim cycle.
        INACTIVE: Temporarily paused by an operator.
        INVALID: Validation detected the account no longer exists.
        DEREGISTERED: Removed on an approved removal request.
    """

    ACTIVE = "active"
    INACTIVE = "inactive"
    INVALID = "invalid"
    DEREGISTERED = "deregistered"


class Registration(BaseModel):
    """One external account under management.

    Registrations are never deleted while claim history may reference
    them; removal is expressed through ``status``.

    Attributes:
        account_id: Stable identifier typed into the website's login box.
        username: Display name shown in summaries.
        status: Current :class:`RegistrationStatus`.
        status_reason: Optional note explaining the last status change.
        created_at: When the account was registered (UTC).
        updated_at: When the status last changed (UTC).
        metadata: Free-form operator data.
    """

    account_id: str
    username: str
    status: RegistrationStatus = RegistrationStatus.ACTIVE
    status_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == RegistrationStatus.ACTIVE


class RewardSection(BaseModel):
    """A reward section of the shop page swept by each claim session.

    Attributes:
        name: Short identifier used in logs and screenshot names.
        url: Page URL (usually the shop URL with a section anchor).
        button_selector: Selector matching the section's reward buttons.
        fallback_label: Item label used when the card text is unreadable.
    """

    name: str
    url: str
    button_selector: str = 'button:has-text("FREE")'
    fallback_label: str = "Unknown Item"


def _default_sections() -> List[RewardSection]:
    return [
        RewardSection(
            name="daily_reward",
            url="https://8ballpool.com/en/shop#daily_reward",
            fallback_label="Daily Reward",
        ),
        RewardSection(
            name="free_daily_cue_piece",
            url="https://8ballpool.com/en/shop#free_daily_cue_piece",
            fallback_label="Free Daily Cue Piece",
        ),
    ]


class ClaimerSettings(BaseSettings):
    """Root configuration model for Rewardbot.

    All fields can be set via environment variables or a ``.env`` file.
    The model also merges values from ``config/claimer_config.json``
    (sections, seed accounts, browser overrides) during post-init.

    Section overview:
        * **Core** -- log level, headless mode.
        * **Automation** -- navigation timeout, settle delays, selectors.
        * **Sections** -- the ordered reward sections to sweep.
        * **Concurrency** -- session limit, serial fallback and delay.
        * **Storage** -- ledger database, roster file, screenshots.
        * **Scheduling** -- UTC hours for the daemon loop, cleanup.
        * **Notifications** -- webhook URL and summary size.
    """

    # Core
    log_level: str = "INFO"
    headless: bool = True
    block_images: bool = False

    # Automation timings (ms)
    navigation_timeout_ms: int = 30000
    element_timeout_ms: int = 10000
    login_settle_ms: int = 3000
    click_settle_ms: int = 2000
    scroll_settle_ms: int = 500

    # Login flow selectors
    login_button_selector: str = 'button:has-text("GUEST LOGIN")'
    account_input_selector: str = 'input[placeholder*="Unique ID"]'
    submit_button_selector: str = 'button:has-text("Go")'

    # Reward sections, swept in order within one browser context
    reward_sections: List[RewardSection] = Field(
        default_factory=_default_sections
    )

    # Performance / Concurrency
    max_concurrent_sessions: int = 10
    # Serial fallback for hosts that cannot afford parallel browsers
    sequential: bool = False
    inter_account_delay_seconds: float = 10.0

    # Storage
    ledger_db_path: str = str(BASE_DIR / "claim_ledger.db")
    roster_file: str = str(CONFIG_DIR / "registrations.json")
    screenshot_dir: str = str(BASE_DIR / "screenshots")

    # Seed accounts (comma separated in the environment)
    user_ids: Annotated[List[str], NoDecode] = Field(default_factory=list)
    # Legacy single-account variable, merged into user_ids
    user_id: Optional[str] = None

    # Scheduling
    schedule_hours_utc: List[int] = Field(
        default_factory=lambda: [0, 6, 12, 18]
    )
    auto_cleanup_duplicates: bool = True

    # Notifications
    alert_webhook_url: Optional[str] = None
    summary_max_entries: int = 10

    # Browser fingerprint
    user_agents: List[str] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @field_validator("user_ids", mode="before")
    @classmethod
    def _split_user_ids(cls, value: Any) -> Any:
        """Accept ``USER_IDS=1,2,3`` as well as a JSON list."""
        if isinstance(value, str):
            value = value.strip()
            if not value.startswith("["):
                return [part.strip() for part in value.split(",") if part.strip()]
            value = json.loads(value)
        if isinstance(value, int):
            return [str(value)]
        if isinstance(value, list):
            return [str(item).strip() for item in value if str(item).strip()]
        return value

    @field_validator("schedule_hours_utc")
    @classmethod
    def _check_hours(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("schedule_hours_utc must not be empty")
        bad = [h for h in value if not 0 <= h <= 23]
        if bad:
            raise ValueError(f"schedule hours must be 0-23, got {bad}")
        return sorted(set(value))

    @field_validator("max_concurrent_sessions")
    @classmethod
    def _check_concurrency(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_concurrent_sessions must be >= 1")
        return value

    def model_post_init(self, __context: Any) -> None:
        """Merge ``USER_ID`` and ``config/claimer_config.json`` after construction."""
        if self.user_id and self.user_id.strip() not in self.user_ids:
            self.user_ids.append(self.user_id.strip())
        self._load_claimer_config_defaults()

    def _load_claimer_config_defaults(self) -> None:
        """Load sections, seed accounts and browser overrides from file.

        Seed accounts already present are *not* duplicated.  Browser
        overrides (headless, timeout, block_images, user_agents) are
        applied only when the JSON file provides them.
        """
        config_path: Path = CONFIG_DIR / "claimer_config.json"
        if not config_path.exists():
            return

        try:
            data: Dict[str, Any] = json.loads(
                config_path.read_text(encoding="utf-8")
            )
        except Exception as exc:
            logger.warning(
                "Failed to load claimer_config.json: %s", exc
            )
            return

        sections = data.get("reward_sections")
        if isinstance(sections, list) and sections:
            try:
                self.reward_sections = [
                    RewardSection(**section) for section in sections
                ]
            except Exception as exc:
                logger.warning(
                    "Ignoring invalid reward_sections in config: %s", exc
                )

        seed_ids = data.get("user_ids")
        if isinstance(seed_ids, list):
            for account_id in seed_ids:
                account_id = str(account_id).strip()
                if account_id and account_id not in self.user_ids:
                    self.user_ids.append(account_id)

        browser_settings = data.get("browser_settings")
        if isinstance(browser_settings, dict):
            if "headless" in browser_settings:
                self.headless = bool(browser_settings.get("headless"))
            if "timeout" in browser_settings:
                self.navigation_timeout_ms = int(
                    browser_settings.get(
                        "timeout", self.navigation_timeout_ms
                    )
                )
            if "block_images" in browser_settings:
                self.block_images = bool(
                    browser_settings.get("block_images")
                )
            ua_setting = browser_settings.get("user_agents")
            if isinstance(ua_setting, list) and ua_setting:
                self.user_agents = ua_setting

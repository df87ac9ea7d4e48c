"""Configuration management using pydantic-settings.

Key patterns:
1. Multiple env files (.env, .env.local) - local overrides shared
2. Optional collaborators with startup warnings
3. validation_alias for explicit env var names (RALPH_ prefix)
4. Singleton instance for easy import

Usage:
    from ralph.loop.config import settings
    print(settings.explore_end)
"""

import logging
import shutil
from pathlib import Path
from typing import Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

NOTIFIER_COMMANDS = ("terminal-notifier", "osascript", "notify-send")


class Settings(BaseSettings):
    """Loop settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        extra="ignore",
    )

    @model_validator(mode="after")
    def check_phase_windows(self) -> Self:
        """Phase windows must be ordered: explore ends before focused."""
        if self.focused_end < self.explore_end:
            raise ValueError(
                f"RALPH_FOCUSED_END ({self.focused_end}) must be >= "
                f"RALPH_EXPLORE_END ({self.explore_end})"
            )
        return self

    @model_validator(mode="after")
    def warn_missing_collaborators(self) -> Self:
        """Warn at startup if optional collaborators are unavailable."""
        if self.notifications_enabled and not any(
            shutil.which(cmd) for cmd in NOTIFIER_COMMANDS
        ):
            logger.warning(
                "No desktop notifier found (%s); notifications will only be logged",
                ", ".join(NOTIFIER_COMMANDS),
            )
        return self

    # ==========================================================================
    # PATHS
    # ==========================================================================

    state_dir: Path = Field(
        default=Path(".claude"),
        validation_alias="RALPH_STATE_DIR",
        description="Directory holding the loop state file, mailbox and memory",
    )

    # ==========================================================================
    # HEADLESS RUNNER
    # ==========================================================================

    model: str | None = Field(
        default=None,
        validation_alias="RALPH_MODEL",
        description="Model for `ralph run` (None = Claude Code default)",
    )

    max_budget_usd: float | None = Field(
        default=None,
        gt=0,
        validation_alias="RALPH_MAX_BUDGET_USD",
        description="Spending cap for one `ralph run` session",
    )

    # ==========================================================================
    # STRATEGY THRESHOLDS
    # ==========================================================================

    explore_end: int = Field(
        default=10,
        ge=0,
        validation_alias="RALPH_EXPLORE_END",
        description="Last iteration of the explore phase",
    )

    focused_end: int = Field(
        default=35,
        ge=0,
        validation_alias="RALPH_FOCUSED_END",
        description="Last iteration of the focused phase",
    )

    repeated_error_threshold: int = Field(
        default=3,
        ge=1,
        validation_alias="RALPH_REPEATED_ERROR_THRESHOLD",
        description="Repeated-error count that forces recovery",
    )

    stuck_threshold: int = Field(
        default=5,
        ge=1,
        validation_alias="RALPH_STUCK_THRESHOLD",
        description="Turns without meaningful progress that force recovery",
    )

    track_progress: bool = Field(
        default=False,
        validation_alias="RALPH_TRACK_PROGRESS",
        description="Advance progress.stuck_count from each turn's signals",
    )

    # ==========================================================================
    # MEMORY / CONTEXT LIMITS
    # ==========================================================================

    max_memory_items: int = Field(
        default=20,
        ge=1,
        validation_alias="RALPH_MAX_MEMORY_ITEMS",
        description="Entries kept in each append-only memory list",
    )

    max_next_actions: int = Field(
        default=5,
        ge=0,
        validation_alias="RALPH_MAX_NEXT_ACTIONS",
        description="Next actions shown in the directive",
    )

    max_learnings_shown: int = Field(
        default=5,
        ge=0,
        validation_alias="RALPH_MAX_LEARNINGS_SHOWN",
        description="Most recent learnings shown in the directive",
    )

    max_errors_shown: int = Field(
        default=3,
        ge=0,
        validation_alias="RALPH_MAX_ERRORS_SHOWN",
        description="Distinct error patterns shown in the directive",
    )

    learning_similarity: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        validation_alias="RALPH_LEARNING_SIMILARITY",
        description="Similarity at which a new learning counts as a duplicate",
    )

    # ==========================================================================
    # OPTIONAL COLLABORATORS (the loop degrades gracefully without these)
    # ==========================================================================

    knowledge_enabled: bool = Field(
        default=True,
        validation_alias="RALPH_KNOWLEDGE_ENABLED",
        description="Write repeated error patterns to the cross-session sink",
    )

    knowledge_similarity: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        validation_alias="RALPH_KNOWLEDGE_SIMILARITY",
        description="Similarity at which a stored pattern suppresses a new one",
    )

    notifications_enabled: bool = Field(
        default=False,
        validation_alias="RALPH_NOTIFICATIONS",
        description="Send desktop notifications on checkpoints and completion",
    )

    log_level: str = Field(
        default="WARNING",
        validation_alias="RALPH_LOG_LEVEL",
        description="Log level for hook invocations",
    )


# Singleton instance
settings = Settings.model_validate({})

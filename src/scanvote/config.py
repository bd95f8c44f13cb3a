"""Environment-based configuration for ScanVote."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from SCANVOTE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SCANVOTE_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # Reference data
    catalog_path: str | None = None
    orb_features: int = Field(default=500, ge=1)

    # Classifier concurrency
    max_concurrent: int = Field(default=2, ge=1)
    classify_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_file_size: int = Field(default=20_971_520, ge=1)

    # Capture pacing
    frames_per_attempt_desktop: int = Field(default=5, ge=1)
    frames_per_attempt_mobile: int = Field(default=3, ge=1)
    inter_frame_delay_ms: int = Field(default=150, ge=0)
    inter_attempt_delay_ms: int = Field(default=1000, ge=0)
    frame_wait_timeout_s: float = Field(default=5.0, gt=0)
    frame_queue_size: int = Field(default=16, ge=1)

    # Per-attempt voting
    consensus_threshold: float = Field(default=0.80, ge=0.0, le=1.0)
    vote_tie_margin: int = Field(default=1, ge=0)
    min_quality_gap_for_tie_break: float = Field(default=8, ge=0)

    # Cross-attempt history
    history_size: int = Field(default=3, ge=1)
    consistency_threshold: float = Field(default=0.67, ge=0.0, le=1.0)
    perfect_single_scan_min_matches: int = Field(default=25, ge=0)

    # Classifier thresholds
    min_validated_matches_for_fallback: int = Field(default=20, ge=0)
    single_shot_min_matches: int = Field(default=15, ge=0)
    ratio_test: float = Field(default=0.75, gt=0.0, le=1.0)
    fast_classifier_distance_threshold: float = Field(default=0.6, gt=0.0)

    def frames_per_attempt(self, *, mobile: bool) -> int:
        """Return the burst size for the given device class."""
        return self.frames_per_attempt_mobile if mobile else self.frames_per_attempt_desktop


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()

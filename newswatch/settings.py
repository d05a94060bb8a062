"""Centralized worker configuration loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Worker configuration sourced from environment variables."""

    model_config = SettingsConfigDict(env_file=None, extra="ignore", case_sensitive=False)

    log_level: str = Field(default="INFO", description="Python logging level (e.g. INFO, DEBUG).")

    data_dir: Path = Field(
        default=Path("data"),
        description="Root directory holding job markers (programs/) and videos (videos/).",
    )

    # --- discovery ---
    listing_url: str = Field(
        default="https://archive.org/details/tv?weekshows&output=json",
        description="Archive listing returning the ids of recently aired programs.",
    )
    networks: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["CNNW", "FOXNEWSW", "MSNBCW", "BBCNEWS"],
        description="Networks whose programs are registered for processing.",
    )
    recency_window_sec: int = Field(
        default=86400,
        description="Programs whose airtime is further than this from now are ignored.",
    )

    # --- video origin ---
    archive_download_base: str = Field(
        default="http://archive.org/download",
        description="Base URL used to download full program recordings.",
    )
    archive_details_base: str = Field(
        default="https://archive.org/details",
        description="Base URL used for program deep links in reports.",
    )
    archive_user_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ARCHIVE_USER_ID", "archive_user_id"),
        description="Value of the logged-in-user cookie sent with downloads.",
    )
    archive_sig: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ARCHIVE_SIG", "archive_sig"),
        description="Value of the logged-in-sig cookie sent with downloads.",
    )
    download_retry_delay_sec: float = Field(
        default=600.0,
        description="Delay before a job whose download failed is returned to the queue.",
    )
    download_max_attempts: Optional[int] = Field(
        default=None,
        description="Optional ceiling on download attempts; unset retries forever.",
    )

    # --- split / probe ---
    ffmpeg_path: str = Field(
        default="ffmpeg",
        validation_alias=AliasChoices("FFMPEG_PATH", "ffmpeg_path"),
        description="ffmpeg executable used to split recordings.",
    )
    ffprobe_path: str = Field(
        default="ffprobe",
        validation_alias=AliasChoices("FFPROBE_PATH", "ffprobe_path"),
        description="ffprobe executable used to probe segment durations.",
    )
    segment_time_sec: int = Field(
        default=1200,
        description="Length in seconds of each segment submitted for classification.",
    )

    # --- classification ---
    matroid_api_base: str = Field(
        default="https://www.matroid.com/api/0.1",
        description="Base URL of the video classification API.",
    )
    matroid_client_id: Optional[str] = Field(default=None, description="OAuth client id.")
    matroid_client_secret: Optional[str] = Field(default=None, description="OAuth client secret.")
    matroid_detector_id: Optional[str] = Field(
        default=None, description="Detector used to classify segments."
    )
    token_refresh_margin_sec: float = Field(
        default=60.0,
        description="Access tokens are refreshed this many seconds before they expire.",
    )
    poll_interval_sec: float = Field(
        default=10.0,
        description="Seconds between classification status polls.",
    )
    segment_concurrency: int = Field(
        default=4,
        description="Maximum number of segments in flight with the classifier at once.",
    )

    # --- aggregation ---
    confidence_threshold: float = Field(
        default=90.0,
        description="A second counts as a hit only when its best score exceeds this.",
    )
    gap_tolerance_sec: int = Field(
        default=3,
        description="Maximum gap in seconds between hits merged into the same interval.",
    )

    # --- scheduling ---
    scheduler_enabled: bool = Field(
        default=True,
        description="Start the discovery and dispatch loops when the app starts.",
    )
    discovery_interval_sec: float = Field(default=60.0, description="Discovery tick cadence.")
    dispatch_interval_sec: float = Field(default=60.0, description="Dispatch tick cadence.")

    # --- notifications ---
    webhooks_file: Path = Field(
        default=Path("webhooks.txt"),
        description="Registry of webhook URLs receiving reports, one per line.",
    )
    webhook_hmac_secret: Optional[str] = Field(
        default=None, description="Optional secret used to sign outbound reports."
    )

    # --- results archive ---
    storage_backend: Literal["local", "s3"] = Field(
        default="local", description="Backend archiving raw and aggregated results."
    )
    results_dir: Path = Field(
        default=Path("data/results"),
        description="Root directory for the local results archive.",
    )
    s3_bucket: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("S3_BUCKET", "S3_BUCKET_NAME"),
        description="Target S3 bucket when using the S3 storage backend.",
    )
    s3_prefix: str = Field(default="", description="Prefix applied to stored object keys.")
    aws_access_key_id: Optional[str] = Field(
        default=None, description="AWS access key used for S3 operations."
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, description="AWS secret key used for S3 operations."
    )
    aws_region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("AWS_REGION", "S3_REGION"),
        description="AWS region for S3 interactions.",
    )

    HTTP_CONNECT_TIMEOUT: float = 10.0
    HTTP_READ_TIMEOUT: float = 60.0
    HTTP_TOTAL_TIMEOUT: float = 600.0

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return (value or "INFO").strip().upper()

    @field_validator("s3_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        raw = (value or "").strip()
        return raw.strip("/")

    @field_validator("networks", mode="before")
    @classmethod
    def _split_networks(cls, value):
        if isinstance(value, str):
            return [part.strip().upper() for part in value.split(",") if part.strip()]
        return value

    @field_validator(
        "archive_user_id",
        "archive_sig",
        "matroid_client_id",
        "matroid_client_secret",
        "matroid_detector_id",
        "s3_bucket",
        "aws_access_key_id",
        "aws_secret_access_key",
        "webhook_hmac_secret",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = str(value).strip()
        return stripped or None

    @field_validator("segment_concurrency")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, int(value))

    @model_validator(mode="after")
    def _validate_backend(self) -> "Settings":
        if self.storage_backend == "s3":
            missing: list[str] = []
            if not self.s3_bucket:
                missing.append("S3_BUCKET")
            if not self.aws_access_key_id:
                missing.append("AWS_ACCESS_KEY_ID")
            if not self.aws_secret_access_key:
                missing.append("AWS_SECRET_ACCESS_KEY")
            if missing:
                joined = ", ".join(missing)
                raise ValueError(
                    "Missing required environment variables for S3 backend: " + joined
                )
        return self

    @property
    def programs_dir(self) -> Path:
        return self.data_dir / "programs"

    @property
    def videos_dir(self) -> Path:
        return self.data_dir / "videos"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings, raising a friendly error on failure."""

    try:
        return Settings()
    except ValidationError as exc:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "settings"
            messages.append(f"{location}: {error.get('msg')}")
        joined = "; ".join(messages) or str(exc)
        raise RuntimeError(f"Configuration error: {joined}") from exc
    except ValueError as exc:
        raise RuntimeError(f"Configuration error: {exc}") from exc


settings = get_settings()

"""
settings.py — Configuration loading and live reload for live_watcher
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from utils import parse_log_level
from verifications import verify_destinations

logger = logging.getLogger("live_watcher")

DEFAULT_DISCOVERY_URL = "https://www.googleapis.com/youtube/v3/search"


class ConfigurationError(Exception):
    """Raised when the configuration file cannot be read, parsed or applied."""


# ───── models ───── #
class Channel(BaseModel):
    """A monitored channel and the directory its recordings are written to."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Remote channel identity")
    save_to: str = Field(..., min_length=1, description="Destination directory")


class WatcherConfig(BaseModel):
    """The parsed configuration document."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    log_level: str = "info"
    channels: List[Channel]
    api_key: str = Field(..., alias="APIKey", min_length=1)
    python: str = Field(..., min_length=1, description="Recorder runtime")
    query_interval: int = Field(..., ge=1, description="Minutes between cycles")
    recorder_module: str = Field(default="yt_dlp", min_length=1)
    recorder_args: List[str] = Field(default_factory=list)
    dedup_scope: Literal["session", "lifetime"] = "session"
    log_dir: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    discovery_url: str = DEFAULT_DISCOVERY_URL

    @field_validator("discovery_url")
    @classmethod
    def validate_discovery_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("discovery_url must start with http:// or https://")
        return v


@dataclass(frozen=True)
class ChannelQuery:
    """A channel together with its precomputed discovery query parameters."""

    channel: Channel
    params: Tuple[Tuple[str, str], ...]

    def as_params(self) -> Dict[str, str]:
        return dict(self.params)


@dataclass(frozen=True)
class CycleSnapshot:
    """Everything one poll cycle needs, fixed for the duration of that cycle."""

    config: WatcherConfig
    queries: Tuple[ChannelQuery, ...]

    @property
    def interval_seconds(self) -> int:
        return self.config.query_interval * 60


def build_query(channel: Channel, api_key: str) -> ChannelQuery:
    """Build the discovery query for one channel."""
    return ChannelQuery(
        channel=channel,
        params=(
            ("part", "snippet"),
            ("channelId", channel.id),
            ("type", "video"),
            ("eventType", "live"),
            ("key", api_key),
        ),
    )


def read_config(path: Path) -> WatcherConfig:
    """Read and validate the configuration file.

    Args:
        path: Path to the JSON configuration file

    Returns:
        The validated configuration

    Raises:
        ConfigurationError: If the file is missing, unreadable, not valid JSON
            or does not match the expected schema
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in configuration {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration {path} must be a JSON object")

    try:
        return WatcherConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e


# ───── reload coordinator ───── #
class ReloadCoordinator:
    """Re-reads the configuration file and publishes an immutable snapshot.

    The snapshot is built completely before it replaces the previous one, so a
    reader holding ``current`` never sees a partially applied configuration.
    Any failure is fatal: the previous snapshot is never silently reused.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.current: Optional[CycleSnapshot] = None

    def reload(self) -> CycleSnapshot:
        """Load the configuration and swap in the new snapshot.

        Returns:
            The snapshot now in effect

        Raises:
            ConfigurationError: If the configuration cannot be loaded or a
                destination directory cannot be created
        """
        config = read_config(self.path)
        if not verify_destinations(config.channels):
            raise ConfigurationError(
                f"Cannot create destination directories listed in {self.path}"
            )
        snapshot = CycleSnapshot(
            config=config,
            queries=tuple(build_query(ch, config.api_key) for ch in config.channels),
        )
        self._apply_log_level(config.log_level)
        self.current = snapshot
        logger.debug(
            f"Loaded {len(snapshot.queries)} channel(s) from {self.path}: "
            f"{', '.join(q.channel.id for q in snapshot.queries)}"
        )
        return snapshot

    @staticmethod
    def _apply_log_level(name: str):
        level, known = parse_log_level(name)
        if not known:
            logger.warning(f"Unknown log level '{name}', will set to info level")
        logger.setLevel(level)

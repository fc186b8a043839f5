"""
utils.py — Utility functions for live_watcher
"""

import datetime as dt
import logging
from pathlib import Path
from typing import Tuple

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
CHANNEL_URL = "https://www.youtube.com/channel/{channel_id}"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


def parse_log_level(name: str) -> Tuple[int, bool]:
    """Translate a configured log level name into a logging level.

    Matching is case-insensitive. Unknown names map to INFO.

    Args:
        name: The configured level name

    Returns:
        Tuple containing:
        - int: The logging level to apply
        - bool: False if the name was not recognized
    """
    level = LOG_LEVELS.get((name or "").strip().lower())
    if level is None:
        return logging.INFO, False
    return level, True


def watch_url(video_id: str) -> str:
    """Construct the playback URL of a live event from its video identifier."""
    return WATCH_URL.format(video_id=video_id)


def channel_url(channel_id: str) -> str:
    return CHANNEL_URL.format(channel_id=channel_id)


def log_new_line_file(path: Path, message: str):
    with open(path, "a+", encoding="utf-8") as lf:
        lf.write(f"{dt.datetime.now().isoformat()} {message}\n")

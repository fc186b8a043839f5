"""
verifications.py — System verification functions for live_watcher
"""

import logging
import subprocess
from pathlib import Path
from typing import Iterable

logger = logging.getLogger("live_watcher")


def verify_destinations(channels: Iterable) -> bool:
    """Create every channel's destination directory if it does not exist.

    Args:
        channels: Channels carrying ``id`` and ``save_to``

    Returns:
        bool: True if every directory exists or was created, False otherwise
    """
    for channel in channels:
        path = Path(channel.save_to)
        if path.is_dir():
            continue
        try:
            path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created destination for channel {channel.id} at {path}")
        except (PermissionError, OSError) as e:
            logger.error(f"Cannot create directory at: {path}: {e}")
            return False
    return True


def verify_log_dir(path: Path) -> bool:
    """Verify that a log directory exists and is writable.

    Creates the directory if it doesn't exist and tests write permission by
    creating and deleting a temporary file.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except (PermissionError, OSError) as e:
        logger.error(f"Cannot create log directory at {path}: {e}")
        return False

    test_file = path / ".write_test"
    try:
        test_file.write_text("test")
        test_file.unlink()
    except (PermissionError, OSError) as e:
        logger.error(f"No write permission for log directory at {path}: {e}")
        return False
    return True


def verify_recorder(python: str, module: str) -> bool:
    """Check that the recording tool can be run.

    Runs ``<python> -m <module> --version``.

    Returns:
        bool: True if the tool answered with exit code 0, False otherwise
    """
    try:
        result = subprocess.run(
            [python, "-m", module, "--version"],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=30,
        )
    except FileNotFoundError:
        logger.error(f"Recorder runtime not found: {python}")
        return False
    except (OSError, subprocess.SubprocessError) as e:
        logger.error(f"Recorder check error: {e}")
        return False

    if result.returncode == 0:
        logger.info(f"{module} found: {result.stdout.strip()}")
        return True

    logger.error(f"{module} check failed: {result.stderr.strip()[:200]}")
    return False

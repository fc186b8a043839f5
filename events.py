"""
events.py — Messages exchanged between the poller, router, recorders and registry
"""

import asyncio
import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from settings import Channel
from utils import watch_url


@dataclass(frozen=True)
class LiveEvent:
    """A live broadcast discovered on a monitored channel."""

    event_id: str
    channel: Channel
    snippet: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def url(self) -> str:
        return watch_url(self.event_id)

    @property
    def title(self) -> str:
        return str(self.snippet.get("title") or "<title unavailable>")


@dataclass
class RecordingSession:
    """One active recording. Sent to the registry as the start notification."""

    event: LiveEvent
    process: asyncio.subprocess.Process
    started_at: dt.datetime

    @property
    def event_id(self) -> str:
        return self.event.event_id

    @property
    def pid(self) -> int:
        return self.process.pid


@dataclass(frozen=True)
class TerminationNotice:
    """Sent to the registry exactly once when a recording process exits."""

    event_id: str
    process: asyncio.subprocess.Process
    ended_at: dt.datetime
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

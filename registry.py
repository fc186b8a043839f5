"""
registry.py — Single-writer table of active recordings for live_watcher

Every mutation happens inside ``ProcessRegistry.run``, which consumes three
queues: control requests (claim, release, snapshot), start notifications and
termination notifications. Other tasks only ever put messages on those
queues.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set

from events import RecordingSession, TerminationNotice

logger = logging.getLogger("live_watcher")

SESSION_SCOPE = "session"
LIFETIME_SCOPE = "lifetime"


@dataclass
class _Claim:
    event_id: str
    reply: asyncio.Future


@dataclass
class _Release:
    event_id: str


@dataclass
class _Snapshot:
    reply: asyncio.Future


class ProcessRegistry:
    """Authoritative answer to "is this event being recorded?".

    An event id is *claimed* by the router before its recorder is spawned and
    becomes a *session* once the start notification arrives. With the
    ``session`` dedup scope the id can be claimed again after its recording
    ends; with ``lifetime`` it can never be claimed again once it started.
    """

    def __init__(self, dedup_scope: str = SESSION_SCOPE):
        if dedup_scope not in (SESSION_SCOPE, LIFETIME_SCOPE):
            raise ValueError(f"unknown dedup scope: {dedup_scope}")
        self.dedup_scope = dedup_scope
        self.sessions: Dict[str, RecordingSession] = {}
        self._claims: Set[str] = set()
        self._seen: Set[str] = set()
        self.control: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.starts: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.terminations: asyncio.Queue = asyncio.Queue(maxsize=1)

    # ───── read-only views ───── #
    @property
    def active_count(self) -> int:
        return len(self.sessions)

    def is_recording(self, event_id: str) -> bool:
        return event_id in self.sessions

    # ───── messages ───── #
    async def claim(self, event_id: str) -> bool:
        """Reserve an event id for recording.

        Returns:
            bool: True if the caller may start a recorder for this event
        """
        reply = asyncio.get_running_loop().create_future()
        await self.control.put(_Claim(event_id, reply))
        return await reply

    async def release(self, event_id: str):
        """Give back a claim whose recorder never started."""
        await self.control.put(_Release(event_id))

    async def snapshot(self) -> Dict[str, RecordingSession]:
        """Return a copy of the active sessions as seen by the control loop."""
        reply = asyncio.get_running_loop().create_future()
        await self.control.put(_Snapshot(reply))
        return await reply

    async def started(self, session: RecordingSession):
        await self.starts.put(session)

    async def ended(self, notice: TerminationNotice):
        await self.terminations.put(notice)

    async def drain(self):
        """Wait until every notification put so far has been handled."""
        await self.control.join()
        await self.starts.join()
        await self.terminations.join()

    # ───── control loop ───── #
    async def run(self):
        """Consume all three queues until cancelled.

        Whichever queue produces first is handled first. When several are
        ready in the same wake-up, control requests go before starts and
        starts go before terminations.
        """
        streams = (
            (self.control, self._handle_control),
            (self.starts, self._handle_start),
            (self.terminations, self._handle_termination),
        )
        getters: Dict[asyncio.Queue, asyncio.Task] = {}
        try:
            while True:
                for queue, _ in streams:
                    if queue not in getters:
                        getters[queue] = asyncio.ensure_future(queue.get())
                await asyncio.wait(
                    list(getters.values()), return_when=asyncio.FIRST_COMPLETED
                )
                for queue, handler in streams:
                    getter = getters[queue]
                    if not getter.done():
                        continue
                    del getters[queue]
                    try:
                        handler(getter.result())
                    finally:
                        queue.task_done()
        finally:
            for getter in getters.values():
                getter.cancel()

    def _handle_control(self, message):
        if isinstance(message, _Claim):
            granted = self._try_claim(message.event_id)
            if not message.reply.done():
                message.reply.set_result(granted)
        elif isinstance(message, _Release):
            self._claims.discard(message.event_id)
            if message.event_id not in self.sessions:
                self._seen.discard(message.event_id)
            logger.debug(f"Released claim on {message.event_id}")
        elif isinstance(message, _Snapshot):
            if not message.reply.done():
                message.reply.set_result(dict(self.sessions))

    def _try_claim(self, event_id: str) -> bool:
        if event_id in self._claims or event_id in self.sessions:
            return False
        if self.dedup_scope == LIFETIME_SCOPE and event_id in self._seen:
            return False
        self._claims.add(event_id)
        if self.dedup_scope == LIFETIME_SCOPE:
            self._seen.add(event_id)
        return True

    def _handle_start(self, session: RecordingSession):
        event_id = session.event_id
        self._claims.discard(event_id)
        previous: Optional[RecordingSession] = self.sessions.get(event_id)
        if previous is not None:
            logger.warning(
                f"Replacing session for {session.event.url} (PID {previous.pid} → {session.pid})"
            )
        self.sessions[event_id] = session
        logger.info(
            f"start recording live: {session.event.url} [PID: {session.pid}] "
            f"({self.active_count} active)"
        )

    def _handle_termination(self, notice: TerminationNotice):
        session = self.sessions.get(notice.event_id)
        if session is None:
            logger.debug(f"Ignoring termination of unknown recording {notice.event_id}")
            return
        if session.process is not notice.process:
            logger.warning(
                f"Ignoring termination of replaced recorder for {session.event.url} "
                f"(PID {getattr(notice.process, 'pid', None)})"
            )
            return
        del self.sessions[notice.event_id]
        duration = notice.ended_at - session.started_at
        if notice.ok:
            logger.info(f"live stream has ended: {session.event.url} (after {duration})")
        else:
            logger.error(
                f"error occurred while recording {session.event.url} "
                f"for channel {session.event.channel.id}: {notice.error}"
            )
        logger.info(f"{self.active_count} recording(s) active")

#!/usr/bin/env python3
"""
live_watcher.py — 24/7 YouTube live stream recorder

Polls the configured channels for live broadcasts, starts one recorder
process per new broadcast and keeps track of every recording until its
process exits. The configuration file is re-read before every poll cycle.
"""

import argparse
import asyncio
import contextlib
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Dict, List, Optional, Set

from api import (
    DiscoveryError,
    fetch_live_items,
    new_http_session,
    parse_live_events,
    send_discord_notification,
)
from events import LiveEvent
from recorder import RecorderError, RecorderProcess
from registry import ProcessRegistry
from settings import ConfigurationError, CycleSnapshot, ReloadCoordinator
from utils import channel_url
from verifications import verify_log_dir, verify_recorder

# ───── logging setup ───── #
logger = logging.getLogger("live_watcher")
logger.setLevel(logging.INFO)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
FILE_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(log_dir: Optional[Path] = None):
    """Attach the console handler and, if a log directory is given, a rotating file handler."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(ch)

    if log_dir is not None and verify_log_dir(log_dir):
        file_handler = logging.handlers.RotatingFileHandler(
            str(log_dir / "live_watcher.log"),
            maxBytes=5_000_000,
            backupCount=3,
        )
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        logger.addHandler(file_handler)


# ───── EventRouter ───── #
class EventRouter:
    """Starts one recorder per live event the registry has not seen yet.

    Membership is decided by the registry alone; the router only asks it to
    claim an event id before spawning, and releases the claim if the spawn
    fails so the event is picked up again on the next cycle.
    """

    def __init__(self, registry: ProcessRegistry, waiters: Set[asyncio.Task]):
        self.registry = registry
        self.waiters = waiters
        self.recorders: Dict[str, RecorderProcess] = {}
        self._notifications: Set[asyncio.Task] = set()

    async def route(self, event: LiveEvent, snapshot: CycleSnapshot) -> bool:
        """Start recording an event unless it already has a recorder.

        Returns:
            bool: True if a recorder was started
        """
        if not await self.registry.claim(event.event_id):
            logger.debug(f"Already recording {event.url}, skipping")
            return False

        config = snapshot.config
        recorder = RecorderProcess(
            event,
            python=config.python,
            module=config.recorder_module,
            extra_args=config.recorder_args,
            log_dir=Path(config.log_dir) if config.log_dir else None,
        )
        try:
            session = await recorder.start()
        except RecorderError as e:
            logger.error(f"{e} (channel {channel_url(event.channel.id)})")
            await self.registry.release(event.event_id)
            return False

        await self.registry.started(session)
        self.recorders[event.event_id] = recorder
        waiter = asyncio.create_task(self._wait(recorder))
        self.waiters.add(waiter)
        waiter.add_done_callback(self.waiters.discard)

        if config.discord_webhook_url:
            task = asyncio.create_task(
                send_discord_notification(config.discord_webhook_url, event)
            )
            self._notifications.add(task)
            task.add_done_callback(self._notifications.discard)
        return True

    async def _wait(self, recorder: RecorderProcess):
        try:
            notice = await recorder.wait()
            await self.registry.ended(notice)
        finally:
            if self.recorders.get(recorder.event.event_id) is recorder:
                del self.recorders[recorder.event.event_id]


# ───── ChannelPoller ───── #
class ChannelPoller:
    """Queries every configured channel once per cycle and routes what it finds."""

    def __init__(self, coordinator: ReloadCoordinator, router: EventRouter):
        self.coordinator = coordinator
        self.router = router

    async def run(self):
        """Reload, poll every channel, sleep; forever.

        A ConfigurationError raised by the reload is not caught here.
        """
        while True:
            snapshot = self.coordinator.reload()
            await self.run_cycle(snapshot)
            logger.debug(f"Next poll cycle in {snapshot.config.query_interval} minute(s)")
            await asyncio.sleep(snapshot.interval_seconds)

    async def run_cycle(self, snapshot: CycleSnapshot) -> int:
        """Query each channel in configured order.

        A failing channel is logged and skipped; the rest of the cycle goes on.

        Returns:
            int: Number of live events routed during the cycle
        """
        routed = 0
        async with new_http_session() as http:
            for query in snapshot.queries:
                ch_url = channel_url(query.channel.id)
                logger.debug(f"querying live status for channel: {query.channel.id}")
                try:
                    items = await fetch_live_items(http, snapshot.config.discovery_url, query)
                except DiscoveryError as e:
                    logger.error(str(e))
                    continue

                if not items:
                    logger.debug(f"channel {ch_url} has 0 live stream")
                    continue
                logger.debug(f"channel {ch_url} has {len(items)} live stream(s)")
                for event in parse_live_events(items, query):
                    await self.router.route(event, snapshot)
                    routed += 1
        return routed


# ───── Watcher ───── #
class Watcher:
    """Owns the registry loop, the poll loop and every recording waiter."""

    def __init__(self, config_path: Path):
        self.coordinator = ReloadCoordinator(config_path)
        self.registry: Optional[ProcessRegistry] = None
        self.router: Optional[EventRouter] = None
        self.poller: Optional[ChannelPoller] = None
        self.waiters: Set[asyncio.Task] = set()
        self.registry_task: Optional[asyncio.Task] = None
        self.poll_task: Optional[asyncio.Task] = None
        self.main_task: Optional[asyncio.Task] = None

    def load(self) -> CycleSnapshot:
        """Load the configuration for the first time and build the components.

        Raises:
            ConfigurationError: If the configuration is unusable
        """
        snapshot = self.coordinator.reload()
        self.registry = ProcessRegistry(snapshot.config.dedup_scope)
        self.router = EventRouter(self.registry, self.waiters)
        self.poller = ChannelPoller(self.coordinator, self.router)
        logger.info(
            f"Watching {len(snapshot.queries)} channel(s) every "
            f"{snapshot.config.query_interval} minute(s)"
        )
        return snapshot

    async def run(self):
        """Run until the poll loop fails or the task is cancelled."""
        if self.poller is None:
            self.load()
        self.registry_task = asyncio.create_task(self.registry.run())
        self.poll_task = asyncio.create_task(self.poller.run())
        done, _ = await asyncio.wait(
            {self.registry_task, self.poll_task}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in done:
            task.result()

    async def shutdown(self, finish_recordings: bool = True):
        """Stop polling, settle every recording, then stop the registry.

        Args:
            finish_recordings: If True, wait for active recordings to end on
                their own. If False, terminate them.
        """
        logger.info("Shutting down watcher…")
        if self.poll_task and not self.poll_task.done():
            self.poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.poll_task

        if self.waiters:
            if finish_recordings:
                logger.info(f"Waiting for {len(self.waiters)} recording(s) to finish")
            else:
                logger.info(f"Aborting {len(self.waiters)} recording(s)")
                await asyncio.gather(
                    *(r.terminate() for r in list(self.router.recorders.values())),
                    return_exceptions=True,
                )
            await asyncio.gather(*list(self.waiters), return_exceptions=True)
        else:
            logger.info("No channels are currently recording")

        if self.registry_task:
            if not self.registry_task.done():
                await self.registry.drain()
            self.registry_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.registry_task

        if self.main_task and not self.main_task.done():
            self.main_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.main_task


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Record YouTube live streams as soon as they start."
    )
    parser.add_argument(
        "-conf", "--conf", default="config.json", help="Path to the config file"
    )
    parser.add_argument(
        "--log-dir", default="logs", help="Directory for the rotating log file"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """Application entry point.

    Loads the configuration, checks the recorder runtime and runs the watcher
    until interrupted. On Ctrl+C the user chooses whether ongoing recordings
    may finish before the watcher exits.
    """
    args = parse_args(argv)
    setup_logging(Path(args.log_dir) if args.log_dir else None)

    watcher = Watcher(Path(args.conf))
    try:
        snapshot = watcher.load()
    except ConfigurationError as e:
        logger.critical(f"Exiting due to configuration error: {e}")
        sys.exit(1)

    if not verify_recorder(snapshot.config.python, snapshot.config.recorder_module):
        logger.warning("Recorder check failed, recordings are likely to fail")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        watcher.main_task = loop.create_task(watcher.run())
        loop.run_until_complete(watcher.main_task)
    except ConfigurationError as e:
        logger.critical(f"Exiting due to configuration error: {e}")
        loop.run_until_complete(watcher.shutdown(finish_recordings=False))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        ans = (
            input("Exit requested. Let ongoing recordings finish? [Y/n] (default: Y): ")
            .strip()
            .lower()
        )
        finish = ans == "" or ans == "y"
        loop.run_until_complete(watcher.shutdown(finish_recordings=finish))
        logger.info("Exited cleanly")
    finally:
        loop.close()


if __name__ == "__main__":
    main()

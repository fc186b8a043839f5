"""
recorder.py — External recording process wrapper for live_watcher
"""

import asyncio
import datetime as dt
import logging
import subprocess
from pathlib import Path
from typing import IO, List, Optional, Sequence

from events import LiveEvent, RecordingSession, TerminationNotice
from utils import log_new_line_file

logger = logging.getLogger("live_watcher")


class RecorderError(Exception):
    """The recording process could not be started."""


class RecorderProcess:
    """One external recording command tied to one live event.

    The command is ``<python> -m <module> [args...] <event url>`` and runs in
    the channel's destination directory. When ``log_dir`` is given the tool's
    output is appended to ``<log_dir>/<channel id>/<event id>.log``.
    """

    def __init__(
        self,
        event: LiveEvent,
        python: str,
        module: str,
        extra_args: Sequence[str] = (),
        log_dir: Optional[Path] = None,
    ):
        self.event = event
        self.python = python
        self.module = module
        self.extra_args = list(extra_args)
        self.log_fp: Optional[Path] = (
            Path(log_dir) / event.channel.id / f"{event.event_id}.log"
            if log_dir
            else None
        )
        self.session: Optional[RecordingSession] = None
        self._log_file_handle: Optional[IO] = None

    @property
    def command(self) -> List[str]:
        return [self.python, "-m", self.module, *self.extra_args, self.event.url]

    async def start(self) -> RecordingSession:
        """Spawn the recording process.

        Returns:
            The new recording session

        Raises:
            RecorderError: If the process could not be spawned
        """
        stdout = self._open_log()
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.event.channel.save_to,
                stdin=subprocess.DEVNULL,
                stdout=stdout if stdout is not None else subprocess.DEVNULL,
                stderr=subprocess.STDOUT if stdout is not None else subprocess.DEVNULL,
            )
        except OSError as e:
            self._close_log(f"FAILED TO START: {e}")
            raise RecorderError(f"cannot start recording {self.event.url}: {e}") from e

        self.session = RecordingSession(
            event=self.event, process=process, started_at=dt.datetime.now()
        )
        return self.session

    async def wait(self) -> TerminationNotice:
        """Wait for the process to exit and describe how it ended."""
        if self.session is None:
            raise RuntimeError("wait() called before start()")
        process = self.session.process
        returncode = await process.wait()
        error = None if returncode == 0 else f"exited with code {returncode}"
        self._close_log(f"END {error or 'ok'}")
        return TerminationNotice(
            event_id=self.event.event_id,
            process=process,
            ended_at=dt.datetime.now(),
            error=error,
        )

    async def terminate(self, timeout: float = 10):
        """Ask the process to stop, killing it if it does not exit in time."""
        if self.session is None:
            return
        process = self.session.process
        if process.returncode is not None:
            return

        logger.info(f"STOP {self.event.url} (PID: {process.pid})")
        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Recorder for {self.event.url} did not exit after terminate(), sending KILL signal"
                )
                process.kill()
        except ProcessLookupError:
            logger.debug(f"Process {process.pid} already gone")

    def _open_log(self) -> Optional[IO]:
        if self.log_fp is None:
            return None
        try:
            self.log_fp.parent.mkdir(parents=True, exist_ok=True)
            log_new_line_file(
                self.log_fp,
                f"START {self.event.title} for {self.event.channel.id}: {' '.join(self.command)}",
            )
            self._log_file_handle = open(self.log_fp, "ab")
        except OSError as e:
            logger.error(f"Failed to write to recorder log {self.log_fp}: {e}")
            self._log_file_handle = None
        return self._log_file_handle

    def _close_log(self, message: str):
        if self._log_file_handle is None:
            return
        self._log_file_handle.close()
        self._log_file_handle = None
        try:
            log_new_line_file(self.log_fp, message)
        except OSError as e:
            logger.error(f"Failed to write to recorder log {self.log_fp}: {e}")

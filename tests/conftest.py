import asyncio
import contextlib
import json
import logging
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from registry import ProcessRegistry

FAKE_RECORDER = """\
import os
import pathlib
import sys
import time

here = pathlib.Path.cwd()
(here / f"invoked-{os.getpid()}.txt").write_text(" ".join(sys.argv[1:]))
release = here / "release"
deadline = time.time() + 20
while not release.exists() and time.time() < deadline:
    time.sleep(0.05)
code = release.read_text().strip() if release.exists() else ""
sys.exit(int(code or "0"))
"""


def install_fake_recorder(dest: Path) -> Path:
    """Drop a ``fake_recorder`` module into ``dest``.

    Run as ``python -m fake_recorder <url>`` from ``dest``, it records its
    arguments in ``invoked-<pid>.txt`` and exits once ``release`` exists,
    with the exit code written in that file.
    """
    dest.mkdir(parents=True, exist_ok=True)
    (dest / "fake_recorder.py").write_text(FAKE_RECORDER)
    return dest


def live_response(*video_ids):
    return {
        "kind": "youtube#searchListResponse",
        "items": [
            {
                "kind": "youtube#searchResult",
                "id": {"kind": "youtube#video", "videoId": vid},
                "snippet": {"title": f"Live {vid}", "channelTitle": "Test"},
            }
            for vid in video_ids
        ],
    }


async def wait_for(predicate, timeout=10.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.05)


class FakeDiscovery:
    def __init__(self):
        self.url = ""
        self.requests = []
        self.responses = {}

    @property
    def queried(self):
        return [q["channelId"] for q in self.requests]

    async def handle(self, request):
        query = dict(request.query)
        self.requests.append(query)
        status, body = self.responses.get(query.get("channelId"), (200, {"items": []}))
        if isinstance(body, bytes):
            return web.Response(
                body=body, status=status, headers={"Content-Type": "application/json; charset=utf-8"}
            )
        if isinstance(body, str):
            return web.Response(text=body, status=status, content_type="application/json")
        return web.json_response(body, status=status)


@pytest_asyncio.fixture
async def discovery_server():
    fake = FakeDiscovery()
    app = web.Application()
    app.router.add_get("/youtube/v3/search", fake.handle)
    server = TestServer(app)
    await server.start_server()
    fake.url = str(server.make_url("/youtube/v3/search"))
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def registry():
    reg = ProcessRegistry()
    task = asyncio.create_task(reg.run())
    yield reg
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@pytest.fixture
def write_config(tmp_path):
    path = tmp_path / "config.json"

    def _write(**overrides):
        data = {
            "log_level": "info",
            "channels": [{"id": "chA", "save_to": str(tmp_path / "out")}],
            "APIKey": "secret",
            "python": sys.executable,
            "recorder_module": "fake_recorder",
            "query_interval": 1,
        }
        data.update(overrides)
        path.write_text(json.dumps(data))
        return path

    return _write


@pytest.fixture(autouse=True)
def reset_logger():
    logger = logging.getLogger("live_watcher")
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.INFO)

"""
api.py — External API functions for live_watcher
"""

import asyncio
import datetime as dt
import json
import logging
from typing import Any, Dict, Iterator, List

import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from events import LiveEvent
from settings import ChannelQuery
from utils import channel_url

logger = logging.getLogger("live_watcher")

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 11_0_0) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/87.0.4280.88 Safari/537.36"
)
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30)


class DiscoveryError(Exception):
    """A discovery request for one channel failed or returned garbage."""


def new_http_session() -> aiohttp.ClientSession:
    return aiohttp.ClientSession(
        headers={"User-Agent": USER_AGENT}, timeout=REQUEST_TIMEOUT
    )


async def fetch_live_items(
    session: aiohttp.ClientSession, url: str, query: ChannelQuery
) -> List[Dict[str, Any]]:
    """Ask the discovery service which live broadcasts a channel has.

    Args:
        session: The HTTP session to issue the request with
        url: The discovery endpoint
        query: The channel and its query parameters

    Returns:
        The raw ``items`` of the response, in response order

    Raises:
        DiscoveryError: On network failure, a non-2xx status, or a body that
            is not a JSON object with an ``items`` list
    """
    ch_url = channel_url(query.channel.id)
    try:
        async with session.get(url, params=query.as_params()) as response:
            body = await response.read()
            if response.status >= 300:
                raise DiscoveryError(
                    f"cannot query live info for channel: {ch_url}: "
                    f"HTTP {response.status} {body[:200].decode(errors='replace')}"
                )
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise DiscoveryError(
            f"cannot query live info for channel: {ch_url}: {e!r}"
        ) from e

    try:
        payload = json.loads(body.decode(response.charset or "utf-8"))
    except (UnicodeDecodeError, LookupError, json.JSONDecodeError) as e:
        raise DiscoveryError(
            f"cannot parse API response for channel: {ch_url}: {e}"
        ) from e

    if not isinstance(payload, dict):
        raise DiscoveryError(f"cannot parse API response for channel: {ch_url}")
    items = payload.get("items", [])
    if not isinstance(items, list):
        raise DiscoveryError(
            f"cannot parse API response for channel: {ch_url}: 'items' is not a list"
        )
    return items


def parse_live_events(items: List[Dict[str, Any]], query: ChannelQuery) -> Iterator[LiveEvent]:
    """Turn response items into live events, skipping items without a video id."""
    for item in items:
        video_id = None
        if isinstance(item, dict) and isinstance(item.get("id"), dict):
            video_id = item["id"].get("videoId")
        if not video_id:
            logger.warning(
                f"Skipping item without video id for channel {channel_url(query.channel.id)}"
            )
            continue
        snippet = item.get("snippet") or {}
        if not isinstance(snippet, dict):
            snippet = {}
        yield LiveEvent(event_id=str(video_id), channel=query.channel, snippet=snippet)


async def send_discord_notification(webhook_url: str, event: LiveEvent):
    """Send a Discord webhook notification when a recording starts.

    Creates a rich embed with the channel, stream title, URL and timestamp.
    Transient network failures are retried a few times; the result is only
    logged, it never affects the recording.

    Args:
        webhook_url: The Discord webhook URL
        event: The live event being recorded
    """
    if not webhook_url:
        logger.debug("Discord webhook URL not set, skipping webhook notification.")
        return

    now_str = dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    embed = {
        "title": f"🔴 {event.snippet.get('channelTitle') or event.channel.id}",
        "description": event.title,
        "url": event.url,
        "fields": [
            {"name": "Channel", "value": channel_url(event.channel.id), "inline": False},
            {"name": "Date", "value": now_str, "inline": True},
        ],
        "timestamp": dt.datetime.now().isoformat(),
    }
    payload = {"embeds": [embed]}

    try:
        async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT) as session:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(3),
                wait=wait_exponential(multiplier=1, min=2, max=30),
                retry=retry_if_exception_type(
                    (aiohttp.ClientError, asyncio.TimeoutError)
                ),
                reraise=True,
            ):
                with attempt:
                    async with session.post(webhook_url, json=payload) as response:
                        if response.status >= 500:
                            response.raise_for_status()
                        if 200 <= response.status < 300:
                            logger.debug(f"Discord notification sent for {event.url}")
                        else:
                            logger.warning(
                                f"Failed to send Discord notification for {event.url}: "
                                f"{response.status} {await response.text()}"
                            )
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f"Error sending Discord notification for {event.url}: {e!r}")

"""
Channel Resolver - Turns a free-form YouTube URL into a channel id and samples
videos from that channel.

Supported references:
- /channel/{id}             -> used directly
- /user/{name}              -> channels.list?forUsername=
- /@handle, /c/{name}       -> search.list type=channel
- watch?v={id}, youtu.be/{id} -> videos.list, owning channel

Uses a long-lived httpx.AsyncClient owned by the application, passed in
explicitly.
"""

import logging
import random
from dataclasses import dataclass
from typing import Literal, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from trailer_service.config import get_settings

logger = logging.getLogger(__name__)


ReferenceKind = Literal["channel_id", "username", "query", "video_id"]

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"


@dataclass
class ChannelReference:
    """What a URL says about the channel it points to."""

    kind: ReferenceKind
    value: str


def parse_channel_reference(url: str) -> ChannelReference:
    """
    Classify a YouTube URL.

    A missing scheme is tolerated ("youtube.com/@name").

    Raises:
        ChannelResolutionError: If the URL matches no known form
    """
    url = (url or "").strip()
    if not url:
        raise ChannelResolutionError("Empty URL")

    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        parsed = urlparse(f"https://{url}")
    if not parsed.netloc:
        raise ChannelResolutionError("Invalid URL format.")

    host = (parsed.hostname or "").lower()
    segments = [s for s in parsed.path.split("/") if s]

    if len(segments) >= 2 and segments[0].lower() == "channel":
        return ChannelReference("channel_id", segments[1])

    if len(segments) >= 2 and segments[0].lower() == "user":
        return ChannelReference("username", segments[1])

    if segments and segments[0].startswith("@") and len(segments[0]) > 1:
        return ChannelReference("query", segments[0][1:])

    if len(segments) >= 2 and segments[0].lower() == "c":
        return ChannelReference("query", segments[1])

    if "youtube.com" in host and parsed.path.lower().startswith("/watch"):
        video_id = parse_qs(parsed.query).get("v", [None])[0]
        if video_id:
            return ChannelReference("video_id", video_id)

    if host == "youtu.be" and segments:
        return ChannelReference("video_id", segments[0])

    raise ChannelResolutionError("Could not resolve a channel ID from the provided URL.")


class YouTubeClient:
    """
    Minimal YouTube Data API v3 client.

    Features:
    - Channel id resolution for every ChannelReference kind
    - Recent uploads listing (one search.list page, newest first)
    - Random sampling without replacement from that window
    """

    def __init__(self, http_client: httpx.AsyncClient, api_key: str, rng: Optional[random.Random] = None):
        self.settings = get_settings()
        self.http_client = http_client
        self.api_key = api_key
        self.rng = rng or random.Random()

    async def _get(self, resource: str, params: dict) -> dict:
        url = f"{self.settings.youtube_api_base_url}/{resource}"
        try:
            response = await self.http_client.get(url, params={**params, "key": self.api_key})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise YouTubeAPIError(
                f"YouTube API {resource} returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise YouTubeAPIError(f"YouTube API {resource} request failed: {e}") from e

    async def resolve_channel_id(self, reference: ChannelReference) -> str:
        """
        Resolve a parsed reference to a channel id.

        Raises:
            ChannelResolutionError: The API has no matching channel
            YouTubeAPIError: The API call failed
        """
        if reference.kind == "channel_id":
            return reference.value

        if reference.kind == "username":
            data = await self._get("channels", {"part": "id", "forUsername": reference.value})
            items = data.get("items") or []
            channel_id = items[0].get("id") if items else None
        elif reference.kind == "query":
            data = await self._get(
                "search",
                {"part": "snippet", "type": "channel", "maxResults": 1, "q": reference.value},
            )
            items = data.get("items") or []
            channel_id = items[0].get("snippet", {}).get("channelId") if items else None
        else:
            data = await self._get("videos", {"part": "snippet", "id": reference.value})
            items = data.get("items") or []
            channel_id = items[0].get("snippet", {}).get("channelId") if items else None

        if not channel_id:
            raise ChannelResolutionError("Could not resolve a channel ID from the provided URL.")

        logger.info(f"Resolved {reference.kind} '{reference.value}' to channel {channel_id}")
        return channel_id

    async def list_recent_video_urls(self, channel_id: str, limit: Optional[int] = None) -> list[str]:
        """Watch URLs of the channel's most recent uploads (at most one API page)."""
        data = await self._get(
            "search",
            {
                "part": "snippet",
                "channelId": channel_id,
                "order": "date",
                "type": "video",
                "maxResults": limit or self.settings.listing_window,
            },
        )

        urls = []
        for item in data.get("items") or []:
            video_id = (item.get("id") or {}).get("videoId")
            if video_id:
                urls.append(WATCH_URL.format(video_id=video_id))
        return urls

    async def sample_video_urls(self, channel_id: str, count: Optional[int] = None) -> list[str]:
        """
        Pick videos at random from the recent window, without replacement.

        When fewer videos exist than requested, all of them are returned in
        shuffled order.
        """
        count = count or self.settings.sample_video_count
        urls = await self.list_recent_video_urls(channel_id)
        return self.rng.sample(urls, min(count, len(urls)))


class ChannelResolutionError(Exception):
    """Exception raised when a URL cannot be mapped to a channel."""
    pass


class YouTubeAPIError(Exception):
    """Exception raised when the YouTube Data API cannot be reached or errors."""
    pass

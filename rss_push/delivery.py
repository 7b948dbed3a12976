"""Message sinks that deliver text and images to chat destinations."""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import List, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import DeliveryError
from .feeds import strip_html, truncate_text
from .models import FeedEntry, OutgoingMessage

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 100


class MessageSink(Protocol):
    async def send(self, destination: str, message: OutgoingMessage) -> None:
        ...


def build_notice_text(entry: FeedEntry) -> str:
    """Short heading sent ahead of a rendered entry image."""
    return f"[RSS] {entry.source_title or '订阅更新'}\n{entry.title}"


def build_plain_text(entry: FeedEntry) -> str:
    """Text-only rendition of an entry."""
    parts = ["[RSS推送]", entry.title]
    if entry.summary:
        excerpt = strip_html(entry.summary)
        if excerpt:
            parts.append(truncate_text(excerpt, EXCERPT_LENGTH))
    parts.append(entry.link)
    return "\n".join(parts)


class LoggingSink:
    """Sink that only logs; used when no chat endpoint is configured."""

    def __init__(self) -> None:
        self.sent: List[tuple] = []

    async def send(self, destination: str, message: OutgoingMessage) -> None:
        self.sent.append((destination, message))
        if message.text:
            logger.info("[%s] %s", destination, message.text)
        if message.image:
            logger.info("[%s] <image %s>", destination, message.image)


class OneBotSink:
    """Deliver group messages through a OneBot v11 HTTP API."""

    def __init__(
        self,
        api_url: str,
        access_token: Optional[str] = None,
        timeout: float = 10.0,
        retries: int = 3,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        retry = Retry(
            total=retries,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"POST"}),
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        if access_token:
            self.session.headers["Authorization"] = f"Bearer {access_token}"

    def build_segments(self, message: OutgoingMessage) -> List[dict]:
        segments: List[dict] = []
        if message.text:
            segments.append({"type": "text", "data": {"text": message.text}})
        if message.image:
            # inline the bytes; the file is deleted right after sending
            encoded = base64.b64encode(message.image.read_bytes()).decode("ascii")
            segments.append({"type": "image", "data": {"file": f"base64://{encoded}"}})
        return segments

    def _post(self, destination: str, segments: List[dict]) -> None:
        try:
            group_id = int(destination)
        except ValueError as exc:
            raise DeliveryError(f"Invalid group id: {destination}") from exc

        try:
            response = self.session.post(
                f"{self.api_url}/send_group_msg",
                json={"group_id": group_id, "message": segments},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise DeliveryError(f"Failed to send to {destination}: {exc}") from exc

        if payload.get("status") not in ("ok", "async"):
            raise DeliveryError(
                f"OneBot rejected message to {destination}: "
                f"{payload.get('wording') or payload.get('msg') or payload.get('retcode')}"
            )

    async def send(self, destination: str, message: OutgoingMessage) -> None:
        segments = self.build_segments(message)
        if not segments:
            logger.warning("Refusing to send empty message to %s", destination)
            return
        await asyncio.to_thread(self._post, destination, segments)
        logger.info("Sent message to group %s (%d segments)", destination, len(segments))

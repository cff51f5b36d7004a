"""Server-sent event channel between a discovery run and one client."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from newsglobe.data import NewsEvent, SocialPost, category_color, category_group

logger = logging.getLogger(__name__)


def post_payload(post: SocialPost) -> dict[str, Any]:
    return {
        "author": post.author,
        "name": post.name,
        "text": post.text,
        "url": post.url,
        "id": post.id,
        "timestamp": post.timestamp,
        "likes": post.likes,
        "replies": post.replies,
        "reposts": post.reposts,
        "profile_pic": post.profile_pic,
    }


def news_payload(event: NewsEvent) -> dict[str, Any]:
    """Wire representation of a persisted news event."""
    return {
        "id": event.id,
        "headline": event.headline,
        "location": event.location,
        "summary": event.summary,
        "category": event.category,
        "category_group": category_group(event.category),
        "color": category_color(event.category),
        "coordinates": list(event.coordinates),
        "timestamp": event.timestamp.isoformat(),
        "top_tweets": [post_payload(p) for p in event.posts],
    }


def sse_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


class StreamRelay:
    """Single-writer, single-reader event channel.

    A discovery run or an author geo stream writes typed events through the
    emit helpers; the HTTP layer drains :meth:`frames`. Once the relay is
    closed (client gone) every emit is silently dropped. Nothing is delivered
    after ``complete`` or ``finish``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._open = True
        self._completed = False

    @property
    def is_open(self) -> bool:
        return self._open

    def close(self) -> None:
        if self._open:
            logger.info("Stream relay closed")
        self._open = False

    def connected(self, message: str | None = None) -> None:
        payload: dict[str, Any] = {"type": "connected"}
        if message is not None:
            payload["message"] = message
        self._put(payload)

    def status(self, message: str) -> None:
        self._put({"type": "status", "message": message})

    def news(self, event: NewsEvent) -> None:
        self._put({"type": "news", "news": news_payload(event)})

    def geo(self, data: list[dict[str, Any]]) -> None:
        self._put({"type": "geo", "data": data})

    def info(self, message: str) -> None:
        self._put({"type": "info", "message": message})

    def error(self, message: str, **details: Any) -> None:
        self._put({"type": "error", "message": message, **details})

    def complete(self, **summary: Any) -> None:
        """Emit the terminal event; the stream ends after it."""
        self._put({"type": "complete", "success": True, **summary})
        self.finish()

    def finish(self) -> None:
        """End the stream without a summary event."""
        if not self._completed:
            self._completed = True
            self._queue.put_nowait(None)

    def _put(self, payload: dict[str, Any]) -> None:
        if not self._open or self._completed:
            return
        self._queue.put_nowait(payload)

    async def frames(self) -> AsyncIterator[str]:
        """Yield SSE frames until the stream has ended.

        Closes the relay when the consumer stops early.
        """
        try:
            while True:
                payload = await self._queue.get()
                if payload is None:
                    return
                yield sse_frame(payload)
        finally:
            self.close()

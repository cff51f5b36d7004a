from typing import Protocol

from newsglobe.data import SocialPost


class SocialPostFetcher(Protocol):
    """Interface for finding social posts that corroborate a news event."""

    async def fetch(self, keywords: str, headline_hint: str | None = None) -> list[SocialPost]:
        """Find posts matching the keywords.

        Implementations never raise: any failure yields an empty list.

        Args:
            keywords: Search keywords suggested for the event.
            headline_hint: The event headline, used to build a richer variant.

        Returns:
            Up to 10 posts.
        """
        ...

from typing import Protocol

from newsglobe.data import NormalizedQuery, Usage


class QueryNormalizer(Protocol):
    """Interface for mapping a free-text query onto a cache key and scope."""

    async def normalize(self, query: str) -> tuple[NormalizedQuery, Usage]: ...

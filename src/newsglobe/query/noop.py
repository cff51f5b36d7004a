"""No-op normalizer that uses the raw query as the cache key."""

from newsglobe.data import NormalizedQuery, Scope, Usage
from newsglobe.query.claude import GLOBAL_NEWS


class NoOpQueryNormalizer:
    """Normalizer that makes no API calls.

    The trimmed query (or the global sentinel) becomes the key and the scope
    is always ``global``. Useful when no LLM key is configured for
    normalization or to keep cache keys predictable in tests.
    """

    async def normalize(self, query: str) -> tuple[NormalizedQuery, Usage]:
        key = query.strip() or GLOBAL_NEWS
        return (NormalizedQuery(key=key, scope=Scope.GLOBAL), Usage())

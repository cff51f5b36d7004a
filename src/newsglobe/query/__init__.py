from newsglobe.query.base import QueryNormalizer
from newsglobe.query.claude import DEFAULT_SYSTEM_PROMPT, GLOBAL_NEWS, ClaudeQueryNormalizer
from newsglobe.query.noop import NoOpQueryNormalizer

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "GLOBAL_NEWS",
    "ClaudeQueryNormalizer",
    "NoOpQueryNormalizer",
    "QueryNormalizer",
]

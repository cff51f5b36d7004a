import json
import logging
import os

import anthropic
from anthropic.types import TextBlock

from newsglobe.data import APICallUsage, NormalizedQuery, Scope, Usage

logger = logging.getLogger(__name__)

GLOBAL_NEWS = "Global News"

DEFAULT_SYSTEM_PROMPT = """\
You are a query normalizer for a news map. Map the user's request onto a \
canonical topic or location key and a scope.

Respond with a single JSON object: \
{"key": "standardized_topic_or_location", "scope": "global" | "region" | "local"}

Examples:
- "news in paris" -> {"key": "France - Paris", "scope": "local"}
- "US politics" -> {"key": "USA - Politics", "scope": "region"}
- "what is happening in the world" -> {"key": "Global News", "scope": "global"}

Return ONLY the JSON object. Do NOT output markdown.\
"""


def _strip_fences(raw: str) -> str:
    """Remove markdown code fences around a JSON payload."""
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        cleaned = cleaned.rsplit("```", 1)[0]
    return cleaned.strip()


class ClaudeQueryNormalizer:
    """Normalize queries with a single structured-output Claude call.

    Normalization never blocks the pipeline: any failure falls back to the
    raw query as key with ``global`` scope.

    Args:
        model: Anthropic model ID to use.
        api_key: API key (defaults to CLAUDE_API_KEY env var).
        system_prompt: Custom system prompt. Must ask for a JSON object with
            ``"key"`` and ``"scope"`` fields.
    """

    def __init__(
        self,
        *,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self._model = model
        resolved_key = api_key or os.environ.get("CLAUDE_API_KEY")
        self._client = anthropic.AsyncAnthropic(api_key=resolved_key)
        self._system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT

    async def normalize(self, query: str) -> tuple[NormalizedQuery, Usage]:
        """Normalize a free-text query.

        Args:
            query: The user's query, possibly empty.

        Returns:
            Tuple of (normalized query, usage).
        """
        text = query.strip() or GLOBAL_NEWS
        fallback = NormalizedQuery(key=text, scope=Scope.GLOBAL)

        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=256,
                temperature=0,
                system=self._system_prompt,
                messages=[{"role": "user", "content": text}],
            )
        except anthropic.APIError as e:
            logger.warning(f"Query normalization failed for {text!r}. Error: {e}")
            return (fallback, Usage())

        usage = Usage(
            api_calls=[
                APICallUsage(
                    model=self._model,
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                ),
            ],
        )

        raw = "".join(block.text for block in response.content if isinstance(block, TextBlock))
        try:
            parsed = json.loads(_strip_fences(raw))
        except json.JSONDecodeError:
            logger.warning(f"Normalizer returned invalid JSON for {text!r}: {raw[:100]}")
            return (fallback, usage)

        if not isinstance(parsed, dict):
            return (fallback, usage)

        key = parsed.get("key")
        if not isinstance(key, str) or not key.strip():
            key = text
        try:
            scope = Scope(str(parsed.get("scope", Scope.GLOBAL)).lower())
        except ValueError:
            scope = Scope.GLOBAL

        return (NormalizedQuery(key=key.strip(), scope=scope), usage)

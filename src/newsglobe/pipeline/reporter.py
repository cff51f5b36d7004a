"""Claude-backed news reporter using streamed tool calls."""

import json
import logging
import os
from collections.abc import Callable
from typing import Any

import anthropic

from newsglobe.data import APICallUsage, Candidate, Usage
from newsglobe.pipeline.base import ReportRequest

logger = logging.getLogger(__name__)

TOOL_NAME = "report_news"

REPORT_NEWS_TOOL: dict[str, Any] = {
    "name": TOOL_NAME,
    "description": "Report a single news event. Call once per story.",
    "input_schema": {
        "type": "object",
        "properties": {
            "headline": {"type": "string"},
            "location": {
                "type": "string",
                "description": "Place where the event happened, specific enough to geocode.",
            },
            "summary": {"type": "string"},
            "category": {"type": "string"},
            "timestamp": {
                "type": "string",
                "description": "When the event happened, ISO-8601.",
            },
            "search_query": {
                "type": "string",
                "description": (
                    "Keywords to search for real posts about this event on X, "
                    "e.g. 'Japan Earthquake'."
                ),
            },
        },
        "required": ["headline", "location", "summary", "search_query"],
    },
}

SYSTEM_PROMPT = """\
You are an AI journalist assistant.
Role: Identify confirmed, high-impact news events from the LAST 7 DAYS.
Current Date: {now}
Context: User is interested in "{key}". Scope is {scope}.
Target Quantity: ~{fetch_count} distinct stories.

Requirements:
- You MUST call the `report_news` tool {fetch_count} SEPARATE times.
- ONE tool call per story. Do NOT combine them.
- Categories: Breaking News, Conflict, Politics, Science, Technology, Sports, \
Research, Uplifting, Business.
- Verified facts only. No duplicates.
- STRICTLY IGNORE events older than 7 days from today.
- PROVIDE SEARCH KEYWORDS: For each story, provide a "search_query" optimized \
to find top posts about it on X.\
"""


class ToolCallAccumulator:
    """Collect streamed tool-call arguments by content block index.

    Argument JSON arrives as ``input_json_delta`` fragments that may split
    anywhere, so fragments are only joined and parsed once the stream has
    ended.

    Args:
        tool_name: Only tool-use blocks for this tool are collected.
    """

    def __init__(self, tool_name: str = TOOL_NAME) -> None:
        self._tool_name = tool_name
        self._fragments: dict[int, list[str]] = {}

    def __len__(self) -> int:
        return len(self._fragments)

    def feed(self, event: Any) -> None:
        """Consume one raw stream event; unrelated events are ignored."""
        if event.type == "content_block_start":
            block = event.content_block
            if block.type == "tool_use" and block.name == self._tool_name:
                self._fragments.setdefault(event.index, [])
        elif event.type == "content_block_delta":
            delta = event.delta
            if delta.type == "input_json_delta" and event.index in self._fragments:
                self._fragments[event.index].append(delta.partial_json)

    def finish(self) -> list[dict[str, Any]]:
        """Parse the accumulated argument sets in block order.

        Argument sets that are not a JSON object are dropped.
        """
        calls: list[dict[str, Any]] = []
        for index in sorted(self._fragments):
            raw = "".join(self._fragments[index])
            try:
                args = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Dropping unparseable tool call {index}: {raw[:100]}")
                continue
            if not isinstance(args, dict):
                logger.warning(f"Dropping tool call {index}: arguments are not an object")
                continue
            calls.append(args)
        return calls


def _str_field(args: dict[str, Any], name: str) -> str | None:
    value = args.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def to_candidate(args: dict[str, Any]) -> Candidate:
    """Build a candidate from parsed tool arguments."""
    return Candidate(
        headline=_str_field(args, "headline"),
        location=_str_field(args, "location"),
        summary=_str_field(args, "summary"),
        category=_str_field(args, "category"),
        timestamp=_str_field(args, "timestamp"),
        search_query=_str_field(args, "search_query"),
    )


def build_user_prompt(request: ReportRequest) -> str:
    prompt = (
        f"Find {request.fetch_count} distinct breaking news stories "
        f'for "{request.normalized_key}". '
        "Return headline, location, and a search query for X."
    )
    if request.excluded_headlines:
        known = "\n- ".join(request.excluded_headlines)
        prompt += (
            "\n\nIMPORTANT: Do NOT report any of the following stories as they are "
            f"already known:\n- {known}"
        )
    return prompt


class ClaudeNewsReporter:
    """Discover news events with one streamed, tool-forced Claude call per round.

    Args:
        model: Anthropic model ID to use.
        api_key: API key (defaults to CLAUDE_API_KEY env var).
        max_tokens: Output token limit per round.
    """

    def __init__(
        self,
        *,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
        max_tokens: int = 8192,
    ) -> None:
        self._model = model
        resolved_key = api_key or os.environ.get("CLAUDE_API_KEY")
        self._client = anthropic.AsyncAnthropic(api_key=resolved_key)
        self._max_tokens = max_tokens

    async def report(
        self,
        request: ReportRequest,
        *,
        is_active: Callable[[], bool] = lambda: True,
    ) -> tuple[list[Candidate], Usage]:
        system = SYSTEM_PROMPT.format(
            now=request.now.isoformat(),
            key=request.normalized_key,
            scope=request.scope,
            fetch_count=request.fetch_count,
        )
        accumulator = ToolCallAccumulator()
        input_tokens = 0
        output_tokens = 0

        stream = await self._client.messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=min(request.temperature, 1.0),
            system=system,
            tools=[REPORT_NEWS_TOOL],
            tool_choice={"type": "tool", "name": TOOL_NAME},
            messages=[{"role": "user", "content": build_user_prompt(request)}],
            stream=True,
        )
        try:
            async for event in stream:
                if event.type == "message_start":
                    input_tokens = event.message.usage.input_tokens
                elif event.type == "message_delta":
                    output_tokens = event.usage.output_tokens
                else:
                    accumulator.feed(event)
                if not is_active():
                    logger.info("Client went away, stopped reading the report stream")
                    break
        finally:
            await stream.close()

        calls = accumulator.finish()
        logger.info(f"Reporter returned {len(calls)} tool calls for {request.normalized_key!r}")

        usage = Usage(
            api_calls=[
                APICallUsage(
                    model=self._model,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                ),
            ],
        )
        return ([to_candidate(args) for args in calls], usage)

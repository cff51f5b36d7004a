"""Per-run JSON records of discovery: normalization, cache hit and every round."""

import uuid
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from newsglobe.data import NewsEvent, NormalizedQuery, Usage


class RoundRecord(BaseModel):
    """What one reporter round asked for and what became of its candidates."""

    attempt: int
    fetch_count: int
    temperature: float
    excluded_headlines: list[str] = []
    candidate_count: int = 0
    accepted: list[str] = []
    skipped: dict[str, int] = {}
    usage: dict[str, Any] | None = None
    duration_seconds: float = 0.0
    error: str | None = None


class EventSummary(BaseModel):
    """Compact view of an event written at the end of a run."""

    id: str
    headline: str
    location: str
    coordinates: tuple[float, float]
    category: str
    post_count: int


class RunRecord(BaseModel):
    """Record of a complete discovery run."""

    run_id: str
    query: str
    started_at: str
    completed_at: str | None = None
    normalized_key: str | None = None
    scope: str | None = None
    normalization_seconds: float = 0.0
    cached_count: int = 0
    rounds: list[RoundRecord] = []
    events: list[EventSummary] = []
    total_usage: dict[str, Any] | None = None
    error: str | None = None


def usage_summary(usage: Usage | None) -> dict[str, Any] | None:
    """Flatten usage to token totals, per-model calls and lookup counts."""
    if usage is None:
        return None
    return {
        "input_tokens": usage.input_tokens,
        "output_tokens": usage.output_tokens,
        "api_calls": [
            {"model": c.model, "input_tokens": c.input_tokens, "output_tokens": c.output_tokens}
            for c in usage.api_calls
        ],
        "social_lookups": usage.social_lookups,
        "geocode_lookups": usage.geocode_lookups,
    }


def event_summary(event: NewsEvent) -> EventSummary:
    return EventSummary(
        id=event.id,
        headline=event.headline,
        location=event.location,
        coordinates=event.coordinates,
        category=event.category,
        post_count=len(event.posts),
    )


class RunLogger:
    """Collects one discovery run and writes it as a JSON file.

    When ``enabled=False``, all methods are no-ops.

    Args:
        log_dir: Directory to write JSON log files.
        enabled: If False, all methods become no-ops.
    """

    def __init__(self, log_dir: Path, *, enabled: bool = True) -> None:
        self._log_dir = log_dir
        self._enabled = enabled
        self._record: RunRecord | None = None
        self._last_log_path: Path | None = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def last_log_path(self) -> Path | None:
        """Path to the last written log file, or None."""
        return self._last_log_path

    def start_run(self, query: str) -> None:
        if not self._enabled:
            return

        self._record = RunRecord(
            run_id=str(uuid.uuid4()),
            query=query,
            started_at=datetime.now(tz=UTC).isoformat(),
        )

    def log_normalization(self, query: NormalizedQuery, duration_seconds: float) -> None:
        if not self._enabled or self._record is None:
            return
        self._record.normalized_key = query.key
        self._record.scope = query.scope.value
        self._record.normalization_seconds = round(duration_seconds, 4)

    def log_cache(self, cached_count: int) -> None:
        if not self._enabled or self._record is None:
            return
        self._record.cached_count = cached_count

    def log_round(
        self,
        *,
        attempt: int,
        fetch_count: int,
        temperature: float,
        excluded_headlines: Sequence[str],
        candidate_count: int,
        accepted: Sequence[str],
        skipped: Mapping[str, int],
        usage: Usage | None,
        duration_seconds: float,
        error: str | None = None,
    ) -> None:
        """Append a round to the current run.

        Args:
            attempt: 1-based round number.
            fetch_count: Stories requested from the reporter.
            temperature: Sampling temperature of the request.
            excluded_headlines: Headlines the reporter was told to avoid.
            candidate_count: Candidates the reporter returned.
            accepted: Headlines that were persisted and emitted.
            skipped: Rejected candidates counted by reason.
            usage: Usage of the round, None when the reporter call failed.
            duration_seconds: Wall-clock time of the round.
            error: Message of the exception that ended the round early.
        """
        if not self._enabled or self._record is None:
            return

        self._record.rounds.append(
            RoundRecord(
                attempt=attempt,
                fetch_count=fetch_count,
                temperature=round(temperature, 2),
                excluded_headlines=list(excluded_headlines),
                candidate_count=candidate_count,
                accepted=list(accepted),
                skipped=dict(skipped),
                usage=usage_summary(usage),
                duration_seconds=round(duration_seconds, 4),
                error=error,
            )
        )

    def finish_run(
        self, events: Sequence[NewsEvent], usage: Usage | None, *, error: str | None = None
    ) -> Path | None:
        """Write the run record to a JSON file.

        Returns:
            Path to the written JSON file, or None if logging is disabled.
        """
        if not self._enabled or self._record is None:
            return None

        self._record.completed_at = datetime.now(tz=UTC).isoformat()
        self._record.events = [event_summary(e) for e in events]
        self._record.total_usage = usage_summary(usage)
        self._record.error = error

        self._log_dir.mkdir(parents=True, exist_ok=True)

        # run_2026-02-12T14-30-00_1a2b3c4d.json; several runs can start in the same second
        ts = self._record.started_at.replace(":", "-")
        ts = ts.split(".")[0].split("+")[0]
        filepath = self._log_dir / f"run_{ts}_{self._record.run_id[:8]}.json"

        filepath.write_text(self._record.model_dump_json(indent=2))
        self._last_log_path = filepath
        self._record = None
        return filepath

"""Reporter protocol for LLM-backed news discovery."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from newsglobe.data import Candidate, Scope, Usage


@dataclass(frozen=True)
class ReportRequest:
    """Parameters of one discovery round.

    Attributes:
        normalized_key: Canonical topic or location the user asked about.
        scope: Scope tier of the query.
        fetch_count: Number of distinct stories to ask for.
        excluded_headlines: Headlines already known, which must not be reported again.
        temperature: Sampling temperature for this round.
        now: Current time, quoted in the prompt.
    """

    normalized_key: str
    scope: Scope
    fetch_count: int
    now: datetime
    excluded_headlines: tuple[str, ...] = ()
    temperature: float = 0.2


class NewsReporter(Protocol):
    """Interface for proposing breaking-news candidates."""

    async def report(
        self,
        request: ReportRequest,
        *,
        is_active: Callable[[], bool] = lambda: True,
    ) -> tuple[list[Candidate], Usage]:
        """Ask for news events matching the request.

        Args:
            request: Round parameters.
            is_active: Polled while reading the response; reading stops early
                once it returns False.

        Returns:
            Tuple of (candidates in the order reported, usage).
        """
        ...

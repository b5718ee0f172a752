# backend/coachbook/services/slots/busy.py
"""
Busy-interval merging across external calendar sources.

Each source keeps its own interval list: overlapping or adjacent intervals
of one source are coalesced, sources are never unioned. A slot is busy if
it overlaps an interval of ANY source.

Failure policy:
- read path (fail_closed=False): a failing source contributes nothing
- commit path (fail_closed=True): a failing source rejects the request
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from ...errors import CalendarUnavailableError
from ..google_calendar import CreatedEvent, SourceBusy

logger = logging.getLogger(__name__)


class CalendarGateway(Protocol):
    def list_busy(
        self, source_ids: list[str], time_min: datetime, time_max: datetime
    ) -> dict[str, SourceBusy]: ...

    def create_event(
        self,
        event_id: str,
        start: datetime,
        end: datetime,
        summary: str,
        description: str = "",
        location: str | None = None,
    ) -> CreatedEvent: ...

    def delete_event(self, event_id: str) -> bool: ...


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime
    source: str

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open overlap: [start, end) vs [self.start, self.end)."""
        return start < self.end and end > self.start

    def contains(self, start: datetime, end: datetime) -> bool:
        return self.start <= start and end <= self.end


@dataclass
class BusySnapshot:
    """Busy state of all sources over one queried range."""
    intervals: dict[str, list[BusyInterval]] = field(default_factory=dict)
    free_overrides: list[BusyInterval] = field(default_factory=list)
    failed_sources: list[str] = field(default_factory=list)
    # Sources whose busy time no free override can cancel (the bookings calendar)
    protected_sources: frozenset[str] = frozenset()

    @property
    def degraded(self) -> bool:
        return bool(self.failed_sources)

    def is_busy(self, start: datetime, end: datetime) -> bool:
        overridden = any(free.contains(start, end) for free in self.free_overrides)
        return any(
            interval.overlaps(start, end)
            for source, source_intervals in self.intervals.items()
            if not overridden or source in self.protected_sources
            for interval in source_intervals
        )

    def for_range(self, start: datetime, end: datetime) -> "BusySnapshot":
        """Restrict to intervals touching [start, end)."""
        return BusySnapshot(
            intervals={
                source: [i for i in items if i.overlaps(start, end)]
                for source, items in self.intervals.items()
            },
            free_overrides=[i for i in self.free_overrides if i.overlaps(start, end)],
            failed_sources=list(self.failed_sources),
            protected_sources=self.protected_sources,
        )


def merge_intervals(intervals: list[BusyInterval]) -> list[BusyInterval]:
    """Coalesce overlapping or adjacent intervals of a single source."""
    merged: list[BusyInterval] = []
    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        if interval.end <= interval.start:
            continue
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = BusyInterval(last.start, interval.end, last.source)
        else:
            merged.append(interval)
    return merged


class BusyIntervalMerger:
    """Fetches busy time from every source and builds a BusySnapshot."""

    def __init__(
        self,
        calendar: CalendarGateway,
        source_ids: list[str],
        protected_sources: tuple[str, ...] = (),
    ):
        self.calendar = calendar
        self.source_ids = list(dict.fromkeys(source_ids))
        self.protected_sources = frozenset(protected_sources)

    def fetch(
        self,
        time_min: datetime,
        time_max: datetime,
        fail_closed: bool = False,
    ) -> BusySnapshot:
        """
        One list_busy call covering [time_min, time_max) for all sources.

        Raises:
            CalendarUnavailableError: fail_closed and any source failed
        """
        results = self.calendar.list_busy(self.source_ids, time_min, time_max)
        snapshot = BusySnapshot(protected_sources=self.protected_sources)

        for source in self.source_ids:
            result = results.get(source)
            if result is None or result.error is not None:
                snapshot.failed_sources.append(source)
                continue

            snapshot.intervals[source] = merge_intervals(
                [BusyInterval(start, end, source) for start, end in result.busy]
            )
            snapshot.free_overrides.extend(
                BusyInterval(start, end, source) for start, end in result.free
            )

        if snapshot.failed_sources:
            if fail_closed:
                logger.error(
                    f"Calendar sources unreachable during commit check: {snapshot.failed_sources}"
                )
                raise CalendarUnavailableError()
            logger.warning(
                f"Calendar sources unreachable, showing availability without them: "
                f"{snapshot.failed_sources}"
            )

        return snapshot

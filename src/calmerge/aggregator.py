from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

from .config import MAX_CONCURRENT_FETCHES
from .errors import ConfigError, DeadlineExceeded
from .ics_parser import parse_calendar
from .models import NormalizedEvent, RawEventRecord, Source
from .normalizer import as_instant, derive_master, normalize_occurrence, to_utc_iso
from .recurrence import RecurrenceEngine, RRuleEngine, expand_occurrences

logger = logging.getLogger(__name__)


def _validate_sources(sources: Sequence[Source]) -> List[Source]:
    if not sources:
        raise ConfigError("At least one calendar source is required")
    checked: List[Source] = []
    for i, source in enumerate(sources):
        if not isinstance(source, Source):
            raise ConfigError(f"Source #{i} is not a Source: {source!r}")
        if not isinstance(source.url, str) or not source.url.strip():
            raise ConfigError(f"Source #{i} has no url")
        if not isinstance(source.label, str) or not source.label.strip():
            raise ConfigError(f"Source #{i} ({source.url}) has no label")
        checked.append(source)
    return checked


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _overridden_instants(records: Sequence[RawEventRecord], tz: tzinfo) -> Dict[str, FrozenSet[datetime]]:
    overrides: Dict[str, set] = {}
    for record in records:
        if record.kind == "event" and record.uid and record.recurrence_id is not None:
            overrides.setdefault(record.uid, set()).add(as_instant(record.recurrence_id, tz))
    return {uid: frozenset(instants) for uid, instants in overrides.items()}


def dedupe_and_sort(events: Sequence[NormalizedEvent]) -> List[NormalizedEvent]:
    """Keep the last event seen for each id, then order by (start, id)."""
    by_id: Dict[str, NormalizedEvent] = {}
    for event in events:
        by_id[event.id] = event
    return sorted(by_id.values(), key=lambda e: (e.start, e.id))


class Aggregator:
    def __init__(
        self,
        sources: Sequence[Source],
        cache: Any,
        engine: Optional[RecurrenceEngine] = None,
        tz: tzinfo = timezone.utc,
        max_workers: int = MAX_CONCURRENT_FETCHES,
    ) -> None:
        self.sources = _validate_sources(sources)
        self.cache = cache
        self.engine = engine or RRuleEngine()
        self.tz = tz
        self.max_workers = max(1, min(max_workers, MAX_CONCURRENT_FETCHES))

    def aggregate(
        self,
        time_min: datetime,
        time_max: datetime,
        deadline: Optional[float] = None,
    ) -> List[NormalizedEvent]:
        """Fetch every source and return the merged, deduplicated, sorted events.

        Any source failing fails the whole call. ``deadline`` is in seconds and
        bounds the wait for all sources together.
        """
        time_min = _as_utc(time_min)
        time_max = _as_utc(time_max)
        if time_min > time_max:
            raise ValueError(f"timeMin {to_utc_iso(time_min)} is after timeMax {to_utc_iso(time_max)}")

        workers = min(len(self.sources), self.max_workers)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="calmerge-fetch")
        try:
            futures: List[Future] = [
                executor.submit(self._collect_source, source, time_min, time_max) for source in self.sources
            ]
            done, pending = wait(futures, timeout=deadline, return_when=FIRST_EXCEPTION)
            for future in futures:
                if future in done and future.exception() is not None:
                    raise future.exception()
            if pending:
                raise DeadlineExceeded(
                    f"{len(pending)} of {len(futures)} sources still pending after {deadline}s"
                )

            collected: List[NormalizedEvent] = []
            for future in futures:
                collected.extend(future.result())
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        merged = dedupe_and_sort(collected)
        logger.info(
            "Aggregated %d events (%d before dedupe) from %d sources", len(merged), len(collected), len(self.sources)
        )
        return merged

    def aggregate_payload(
        self,
        time_min: datetime,
        time_max: datetime,
        deadline: Optional[float] = None,
    ) -> Dict[str, Any]:
        time_min, time_max = _as_utc(time_min), _as_utc(time_max)
        events = self.aggregate(time_min, time_max, deadline=deadline)
        return {
            "range": {"timeMin": to_utc_iso(time_min), "timeMax": to_utc_iso(time_max)},
            "count": len(events),
            "events": [e.to_dict() for e in events],
        }

    def _collect_source(self, source: Source, time_min: datetime, time_max: datetime) -> List[NormalizedEvent]:
        text = self.cache.fetch(source.url)
        records = parse_calendar(text, url=source.url)
        overrides = _overridden_instants(records, self.tz)

        events: List[NormalizedEvent] = []
        for record in records:
            master = derive_master(record, source.label, self.tz)
            if master is None:
                continue
            if master.is_recurring and record.uid in overrides:
                master = replace(master, exclusions=master.exclusions | overrides[record.uid])
            for start in expand_occurrences(master, time_min, time_max, self.engine):
                events.append(normalize_occurrence(master, start))

        logger.info("Source %s yielded %d events from %d records", source.label, len(events), len(records))
        return events

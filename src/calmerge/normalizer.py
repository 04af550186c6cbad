from __future__ import annotations

import logging
from datetime import datetime, time, timezone, tzinfo
from typing import Optional

from .models import DateLike, MasterEvent, NormalizedEvent, RawEventRecord

logger = logging.getLogger(__name__)

UNTITLED = "(No title)"


def to_utc_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def as_instant(value: DateLike, tz: tzinfo) -> datetime:
    """Bare dates become local midnight in ``tz``; floating times are read in ``tz``."""
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=tz)
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def _identity(record: RawEventRecord) -> str:
    if record.uid:
        return record.uid
    raw_start = record.raw_start or (record.start.isoformat() if record.start is not None else "")
    return f"{record.summary or ''}|{raw_start}|{record.location or ''}"


def derive_master(record: RawEventRecord, label: str, tz: tzinfo = timezone.utc) -> Optional[MasterEvent]:
    if record.kind != "event":
        return None
    if record.start is None:
        logger.debug("Skipping event %r from %s: no start", record.uid or record.summary, label)
        return None

    start = as_instant(record.start, tz)
    if record.end is not None:
        end = as_instant(record.end, tz)
    elif record.duration is not None:
        end = start + record.duration
    else:
        logger.debug("Skipping event %r from %s: no end", record.uid or record.summary, label)
        return None

    if end < start:
        logger.debug("Skipping event %r from %s: ends before it starts", record.uid or record.summary, label)
        return None

    # An overridden instance stands on its own; the series it came from excludes it.
    is_override = record.recurrence_id is not None

    return MasterEvent(
        uid=_identity(record),
        title=record.summary or UNTITLED,
        start=start,
        end=end,
        source_label=label,
        all_day=not isinstance(record.start, datetime),
        location=record.location,
        description=record.description,
        rrules=() if is_override else record.rrules,
        rdates=() if is_override else tuple(as_instant(d, tz) for d in record.rdates),
        exclusions=frozenset(as_instant(d, tz) for d in record.exdates),
    )


def normalize_occurrence(master: MasterEvent, start: datetime) -> NormalizedEvent:
    start_iso = to_utc_iso(start)
    return NormalizedEvent(
        id=f"{master.uid}|{start_iso}",
        title=master.title,
        start=start_iso,
        end=to_utc_iso(start + master.duration),
        source=f"ics:{master.source_label}",
        all_day=master.all_day,
        location=master.location,
        description=master.description,
    )


def normalize_record(record: RawEventRecord, label: str, tz: tzinfo = timezone.utc) -> Optional[NormalizedEvent]:
    master = derive_master(record, label, tz)
    if master is None:
        return None
    return normalize_occurrence(master, master.start)

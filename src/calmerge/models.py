from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class Source:
    url: str
    label: str


@dataclass
class CacheEntry:
    text: str
    fetched_at: float           # monotonic seconds


@dataclass(frozen=True)
class RawEventRecord:
    """One calendar component as handed over by the parser, already type-checked."""
    kind: str                   # "event", "todo", "timezone", ...
    uid: Optional[str] = None
    summary: Optional[str] = None
    start: Optional[DateLike] = None
    end: Optional[DateLike] = None
    duration: Optional[timedelta] = None
    location: Optional[str] = None
    description: Optional[str] = None
    rrules: Tuple[str, ...] = ()
    rdates: Tuple[DateLike, ...] = ()
    exdates: Tuple[DateLike, ...] = ()
    recurrence_id: Optional[DateLike] = None
    raw_start: str = ""


@dataclass(frozen=True)
class MasterEvent:
    uid: str
    title: str
    start: datetime             # timezone-aware
    end: datetime               # timezone-aware
    source_label: str
    all_day: bool = False
    location: Optional[str] = None
    description: Optional[str] = None
    rrules: Tuple[str, ...] = ()
    rdates: Tuple[datetime, ...] = ()
    exclusions: FrozenSet[datetime] = field(default_factory=frozenset)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_recurring(self) -> bool:
        return bool(self.rrules or self.rdates)


@dataclass(frozen=True)
class NormalizedEvent:
    id: str                     # "<uid>|<start>"
    title: str
    start: str                  # UTC, "YYYY-MM-DDTHH:MM:SSZ"
    end: str
    source: str                 # "ics:<label>"
    all_day: bool = False
    location: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "start": self.start,
            "end": self.end,
            "allDay": self.all_day,
        }
        if self.location is not None:
            payload["location"] = self.location
        if self.description is not None:
            payload["description"] = self.description
        payload["source"] = self.source
        return payload

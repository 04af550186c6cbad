"""Turns raw iCalendar text into validated :class:`RawEventRecord` values."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, List, Optional, Tuple

from icalendar import Calendar

from .errors import CalendarParseError, ParseSkip
from .models import DateLike, RawEventRecord

logger = logging.getLogger(__name__)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _text(component: Any, name: str) -> Optional[str]:
    value = component.get(name)
    if value is None:
        return None
    if isinstance(value, list):
        value = value[0] if value else None
        if value is None:
            return None
    return str(value)


def _dt(prop: Any, name: str) -> Any:
    # icalendar hands back vBroken for unparseable values; reading .dt on it raises
    try:
        return prop.dt
    except AttributeError:
        return None
    except ValueError as exc:
        raise ParseSkip(f"{name} could not be parsed: {exc}") from exc


def _date_value(component: Any, name: str) -> Optional[DateLike]:
    prop = component.get(name)
    if prop is None:
        return None
    if isinstance(prop, list):
        raise ParseSkip(f"{name} appears more than once")
    value = _dt(prop, name)
    if not isinstance(value, date):
        raise ParseSkip(f"{name} is not a date or date-time: {prop!r}")
    return value


def _raw_text(component: Any, name: str) -> str:
    prop = component.get(name)
    if prop is None:
        return ""
    try:
        raw = prop.to_ical()
    except (AttributeError, TypeError, ValueError):
        return str(prop)
    return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)


def _date_list(component: Any, name: str) -> Tuple[DateLike, ...]:
    values: List[DateLike] = []
    for prop in _as_list(component.get(name)):
        try:
            items = getattr(prop, "dts", None) or []
        except ValueError as exc:
            raise ParseSkip(f"{name} could not be parsed: {exc}") from exc
        for item in items:
            value = _dt(item, name)
            # RDATE;VALUE=PERIOD yields (start, end) pairs; only the start matters here
            if isinstance(value, tuple):
                value = value[0]
            if not isinstance(value, date):
                raise ParseSkip(f"{name} holds a non-date value: {item!r}")
            values.append(value)
    return tuple(values)


def _rules(component: Any) -> Tuple[str, ...]:
    rules = []
    for prop in _as_list(component.get("rrule")):
        raw = prop.to_ical() if hasattr(prop, "to_ical") else prop
        rule = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
        if rule.strip():
            rules.append(rule.strip())
    return tuple(rules)


def _duration(component: Any) -> Optional[timedelta]:
    prop = component.get("duration")
    if prop is None:
        return None
    value = _dt(prop, "DURATION")
    if not isinstance(value, timedelta):
        raise ParseSkip(f"DURATION is not a duration: {prop!r}")
    return value


def record_from_component(component: Any) -> RawEventRecord:
    name = str(getattr(component, "name", "") or "")
    kind = name[1:].lower() if name.upper().startswith("V") else name.lower()
    if kind != "event":
        return RawEventRecord(kind=kind)

    return RawEventRecord(
        kind=kind,
        uid=_text(component, "uid") or None,
        summary=_text(component, "summary"),
        start=_date_value(component, "dtstart"),
        end=_date_value(component, "dtend"),
        duration=_duration(component),
        location=_text(component, "location"),
        description=_text(component, "description"),
        rrules=_rules(component),
        rdates=_date_list(component, "rdate"),
        exdates=_date_list(component, "exdate"),
        recurrence_id=_date_value(component, "recurrence-id"),
        raw_start=_raw_text(component, "dtstart"),
    )


def parse_calendar(text: str, url: str = "<memory>") -> List[RawEventRecord]:
    """Parse one feed document.

    Records are returned in document order. Components that fail validation are
    dropped; a document that is not iCalendar at all raises CalendarParseError.
    """
    try:
        cal = Calendar.from_ical(text)
    except (ValueError, IndexError, KeyError) as exc:
        raise CalendarParseError(url, str(exc)) from exc

    records: List[RawEventRecord] = []
    for component in cal.subcomponents:
        try:
            records.append(record_from_component(component))
        except ValueError as exc:
            logger.debug("Skipping %s in %s: %s", getattr(component, "name", "component"), url, exc)
    return records

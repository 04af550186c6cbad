from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence

from dateutil.rrule import rruleset, rrulestr

from .errors import RecurrenceDegrade
from .models import MasterEvent

logger = logging.getLogger(__name__)

_UNTIL_RE = re.compile(r"UNTIL=([^;\s]+)", re.IGNORECASE)


class RecurrenceEngine(Protocol):
    def expand(
        self,
        rules: Sequence[str],
        dtstart: datetime,
        exclusions: Iterable[datetime],
        window_start: datetime,
        window_end: datetime,
        rdates: Iterable[datetime] = (),
    ) -> List[datetime]:
        ...


def _has_floating_until(rules: Sequence[str]) -> bool:
    for rule in rules:
        match = _UNTIL_RE.search(rule)
        if match and not match.group(1).upper().endswith("Z"):
            return True
    return False


class RRuleEngine:
    """Evaluates RRULE strings with dateutil.

    dateutil refuses a date or floating UNTIL next to an aware DTSTART, so such rules
    are expanded on the wall clock of DTSTART's zone and the zone is put back after.
    """

    def expand(
        self,
        rules: Sequence[str],
        dtstart: datetime,
        exclusions: Iterable[datetime],
        window_start: datetime,
        window_end: datetime,
        rdates: Iterable[datetime] = (),
    ) -> List[datetime]:
        zone = dtstart.tzinfo
        wall_clock = _has_floating_until(rules)

        def local(dt: datetime) -> datetime:
            return dt.astimezone(zone).replace(tzinfo=None) if wall_clock else dt

        anchor = local(dtstart)
        lines = [r if r.upper().startswith("RRULE:") else f"RRULE:{r}" for r in rules]
        try:
            if lines:
                rule_set = rrulestr("\n".join(lines), dtstart=anchor, forceset=True)
            else:
                rule_set = rruleset()
                rule_set.rdate(anchor)
            for extra in rdates:
                rule_set.rdate(local(extra))
            for excluded in exclusions:
                rule_set.exdate(local(excluded))
            instants = rule_set.between(local(window_start), local(window_end), inc=True)
        except (ValueError, TypeError, KeyError, OverflowError) as exc:
            raise RecurrenceDegrade(f"Cannot evaluate {'; '.join(rules) or 'RDATE set'}: {exc}") from exc

        if wall_clock:
            return [instant.replace(tzinfo=zone) for instant in instants]
        return list(instants)


_default_engine = RRuleEngine()


def expand_occurrences(
    master: MasterEvent,
    time_min: datetime,
    time_max: datetime,
    engine: Optional[RecurrenceEngine] = None,
) -> List[datetime]:
    """Occurrence starts of ``master`` for the closed window [time_min, time_max].

    A single event counts if any part of it overlaps the window. A series counts
    occurrences whose start lies inside the window. Order is the engine's order.
    """
    if not master.is_recurring:
        if master.end >= time_min and master.start <= time_max:
            return [master.start]
        return []

    engine = engine or _default_engine
    try:
        return engine.expand(
            master.rrules,
            master.start,
            master.exclusions,
            time_min,
            time_max,
            rdates=master.rdates,
        )
    except RecurrenceDegrade as exc:
        logger.warning("Dropping series %s from %s: %s", master.uid, master.source_label, exc)
        return []

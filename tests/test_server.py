from datetime import datetime, timezone
from types import SimpleNamespace

from calmerge.errors import FetchError
from calmerge.server import CACHE_CONTROL, handle_aggregate

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
CFG = SimpleNamespace(lookback_days=7, lookahead_days=30, request_deadline_seconds=5)


class StubAggregator:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def aggregate_payload(self, time_min, time_max, deadline=None):
        self.calls.append((time_min, time_max, deadline))
        if self.error:
            raise self.error
        return {"range": {}, "count": 0, "events": []}


def test_default_window_uses_lookback_and_lookahead():
    aggregator = StubAggregator()

    status, payload, headers = handle_aggregate({}, aggregator, CFG, now=NOW)

    assert status == 200
    assert headers == {"Cache-Control": CACHE_CONTROL}
    assert aggregator.calls == [
        (datetime(2024, 1, 3, 12, 0, tzinfo=timezone.utc), datetime(2024, 2, 9, 12, 0, tzinfo=timezone.utc), 5)
    ]


def test_query_bounds_are_parsed():
    aggregator = StubAggregator()

    status, _, _ = handle_aggregate(
        {"timeMin": ["2024-01-01T00:00:00Z"], "timeMax": ["2024-01-02"]}, aggregator, CFG, now=NOW
    )

    assert status == 200
    time_min, time_max, _ = aggregator.calls[0]
    assert time_min == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert time_max == datetime(2024, 1, 2, tzinfo=timezone.utc)


def test_bad_query_value_is_a_client_error():
    aggregator = StubAggregator()

    status, payload, _ = handle_aggregate({"timeMin": ["yesterday-ish"]}, aggregator, CFG, now=NOW)

    assert status == 400
    assert "timeMin" in payload["error"]
    assert aggregator.calls == []


def test_inverted_query_window_is_a_client_error():
    status, _, _ = handle_aggregate(
        {"timeMin": ["2024-02-01T00:00:00Z"], "timeMax": ["2024-01-01T00:00:00Z"]}, StubAggregator(), CFG, now=NOW
    )

    assert status == 400


def test_fetch_failure_becomes_server_error():
    aggregator = StubAggregator(error=FetchError("https://a.example/cal.ics", status=404))

    status, payload, headers = handle_aggregate({}, aggregator, CFG, now=NOW)

    assert status == 500
    assert payload == {"error": "Fetch ICS failed 404 for https://a.example/cal.ics"}
    assert headers == {}

import json
from datetime import datetime, timezone

import pytest

from calmerge.aggregator import Aggregator
from calmerge.main import main, run_once
from calmerge.models import Source

FEED = "\r\n".join([
    "BEGIN:VCALENDAR",
    "VERSION:2.0",
    "BEGIN:VEVENT",
    "UID:standup-uid",
    "SUMMARY:Standup",
    "DTSTART:20240110T090000Z",
    "DTEND:20240110T093000Z",
    "END:VEVENT",
    "END:VCALENDAR",
])


class DictCache:
    def fetch(self, url):
        return FEED


def test_run_once_builds_envelope_from_env_sources(monkeypatch):
    monkeypatch.setenv("ICS_SOURCES", '[{"url": "https://a.example/cal.ics", "label": "A"}]')
    monkeypatch.setattr(
        "calmerge.main.build_aggregator",
        lambda cfg: Aggregator(cfg.sources, DictCache(), tz=cfg.tz),
    )

    payload = run_once(time_min="2024-01-10T00:00:00Z", time_max="2024-01-11T00:00:00Z")

    assert payload["count"] == 1
    assert payload["range"] == {"timeMin": "2024-01-10T00:00:00Z", "timeMax": "2024-01-11T00:00:00Z"}
    assert payload["events"][0]["source"] == "ics:A"


def test_run_once_defaults_window_around_now(monkeypatch):
    monkeypatch.setenv("ICS_SOURCES", '[{"url": "https://a.example/cal.ics", "label": "A"}]')
    monkeypatch.setenv("DEFAULT_LOOKBACK_DAYS", "1")
    monkeypatch.setenv("DEFAULT_LOOKAHEAD_DAYS", "1")
    monkeypatch.setattr(
        "calmerge.main.build_aggregator",
        lambda cfg: Aggregator([Source("x", "A")], DictCache()),
    )

    payload = run_once(now=datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc))

    assert payload["range"] == {"timeMin": "2024-01-09T12:00:00Z", "timeMax": "2024-01-11T12:00:00Z"}
    assert payload["count"] == 1


def test_cli_reports_config_errors_as_json(monkeypatch, capsys):
    monkeypatch.setattr("calmerge.main.load_dotenv", lambda: None)
    monkeypatch.delenv("ICS_SOURCES", raising=False)
    monkeypatch.delenv("CALMERGE_CONFIG", raising=False)
    monkeypatch.setattr("sys.argv", ["calmerge"])

    with pytest.raises(SystemExit) as excinfo:
        main()

    assert excinfo.value.code == 1
    assert "error" in json.loads(capsys.readouterr().out)

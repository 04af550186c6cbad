from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from dateutil.parser import isoparse
from dotenv import load_dotenv

from .aggregator import Aggregator
from .cache import SourceCache
from .config import AppConfig, configure_logging, load_config
from .errors import CalmergeError

logger = logging.getLogger(__name__)

AGGREGATE_PATH = "/api/aggregate"
CACHE_CONTROL = "s-maxage=60, stale-while-revalidate=300"


def _query_time(query: Mapping[str, Any], name: str, default: datetime) -> datetime:
    value = query.get(name)
    if isinstance(value, list):
        value = value[0] if value else None
    if not value:
        return default
    try:
        parsed = isoparse(str(value))
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"Invalid {name}: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def handle_aggregate(
    query: Mapping[str, Any],
    aggregator: Aggregator,
    config: AppConfig,
    now: Optional[datetime] = None,
) -> Tuple[int, Dict[str, Any], Dict[str, str]]:
    now = now or datetime.now(timezone.utc)
    try:
        time_min = _query_time(query, "timeMin", now - timedelta(days=config.lookback_days))
        time_max = _query_time(query, "timeMax", now + timedelta(days=config.lookahead_days))
        if time_min > time_max:
            raise ValueError("timeMin must not be after timeMax")
    except ValueError as exc:
        return HTTPStatus.BAD_REQUEST, {"error": str(exc)}, {}

    try:
        payload = aggregator.aggregate_payload(time_min, time_max, deadline=config.request_deadline_seconds)
    except CalmergeError as exc:
        logger.error("Aggregation failed: %s", exc)
        return HTTPStatus.INTERNAL_SERVER_ERROR, {"error": str(exc)}, {}

    return HTTPStatus.OK, payload, {"Cache-Control": CACHE_CONTROL}


class CalendarRequestHandler(BaseHTTPRequestHandler):
    aggregator: Optional[Aggregator] = None
    config: Optional[AppConfig] = None

    def _send_json(self, status: int, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:  # noqa: N802
        parts = urlsplit(self.path)
        if parts.path != AGGREGATE_PATH:
            self._send_json(HTTPStatus.NOT_FOUND, {"error": "not_found"})
            return

        try:
            status, payload, headers = handle_aggregate(parse_qs(parts.query), self.aggregator, self.config)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure serving %s", self.path)
            self._send_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": str(exc)})
            return
        self._send_json(status, payload, headers)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.info("%s - %s", self.address_string(), format % args)


def build_aggregator(cfg: AppConfig) -> Aggregator:
    cache = SourceCache(ttl_seconds=cfg.cache.ttl_seconds, timeout=cfg.fetch.timeout_seconds)
    return Aggregator(cfg.sources, cache, tz=cfg.tz, max_workers=cfg.fetch.max_concurrent)


def run_server(config_path: Optional[str] = None, host: str = "127.0.0.1", port: int = 8787) -> None:
    cfg = load_config(config_path)
    CalendarRequestHandler.config = cfg
    CalendarRequestHandler.aggregator = build_aggregator(cfg)
    server = ThreadingHTTPServer((host, port), CalendarRequestHandler)
    logger.info("calmerge listening on http://%s:%s%s", host, port, AGGREGATE_PATH)
    server.serve_forever()


def main() -> None:
    load_dotenv()
    configure_logging()
    run_server(
        config_path=os.environ.get("CALMERGE_CONFIG"),
        host=os.environ.get("CALMERGE_HOST", "127.0.0.1"),
        port=int(os.environ.get("CALMERGE_PORT", "8787")),
    )


if __name__ == "__main__":
    main()

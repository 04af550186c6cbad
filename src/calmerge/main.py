from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from dateutil.parser import isoparse
from dotenv import load_dotenv

from .config import configure_logging, load_config
from .errors import CalmergeError
from .server import build_aggregator, run_server


def _parse_bound(value: Optional[str], default: datetime) -> datetime:
    if not value:
        return default
    parsed = isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def run_once(
    config_path: Optional[str] = None,
    time_min: Optional[str] = None,
    time_max: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    cfg = load_config(config_path)
    now = now or datetime.now(timezone.utc)
    start = _parse_bound(time_min, now - timedelta(days=cfg.lookback_days))
    end = _parse_bound(time_max, now + timedelta(days=cfg.lookahead_days))

    aggregator = build_aggregator(cfg)
    return aggregator.aggregate_payload(start, end, deadline=cfg.request_deadline_seconds)


def main() -> None:
    import argparse

    load_dotenv()
    ap = argparse.ArgumentParser(description="Merge ICS calendar feeds into one sorted, deduplicated event list")
    ap.add_argument("--config", default=os.environ.get("CALMERGE_CONFIG"))
    ap.add_argument("--time-min", help="ISO-8601 window start (default: now - lookback_days)")
    ap.add_argument("--time-max", help="ISO-8601 window end (default: now + lookahead_days)")
    ap.add_argument("--serve", action="store_true", help="Serve GET /api/aggregate instead of printing once")
    ap.add_argument("--host", default=os.environ.get("CALMERGE_HOST", "127.0.0.1"))
    ap.add_argument("--port", type=int, default=int(os.environ.get("CALMERGE_PORT", "8787")))
    args = ap.parse_args()

    configure_logging()

    if args.serve:
        run_server(config_path=args.config, host=args.host, port=args.port)
        return

    try:
        payload = run_once(config_path=args.config, time_min=args.time_min, time_max=args.time_max)
    except (CalmergeError, ValueError) as exc:
        print(json.dumps({"error": str(exc)}))
        sys.exit(1)
    print(json.dumps(payload, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()

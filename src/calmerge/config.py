from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import json
import logging
import os

import yaml

from .errors import ConfigError
from .models import Source

MAX_CONCURRENT_FETCHES = 16


@dataclass
class CacheConfig:
    ttl_seconds: float


@dataclass
class FetchConfig:
    timeout_seconds: float
    max_concurrent: int


@dataclass
class AppConfig:
    sources: List[Source]
    timezone: str
    lookback_days: float
    lookahead_days: float
    request_deadline_seconds: float
    cache: CacheConfig
    fetch: FetchConfig

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def parse_sources(raw: Any) -> List[Source]:
    if raw is None:
        raise ConfigError("No calendar sources configured (set ICS_SOURCES or 'sources' in the config file)")
    if not isinstance(raw, list) or not raw:
        raise ConfigError("Calendar sources must be a non-empty list of {url, label} objects")

    sources: List[Source] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"Source #{i} must be an object with 'url' and 'label'")
        url = item.get("url")
        label = item.get("label")
        if not isinstance(url, str) or not url.strip():
            raise ConfigError(f"Source #{i} is missing a 'url'")
        if not isinstance(label, str) or not label.strip():
            raise ConfigError(f"Source #{i} ({url}) is missing a 'label'")
        sources.append(Source(url=url.strip(), label=label.strip()))
    return sources


def _sources_from_env(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"ICS_SOURCES is not valid JSON: {exc}") from exc


def _number(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc


def load_config(path: Optional[str] = None) -> AppConfig:
    data: Dict[str, Any] = {}
    if path:
        p = Path(path)
        if not p.exists():
            raise ConfigError(f"Config file not found: {path}")
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

    cache = data.get("cache", {}) or {}
    fetch = data.get("fetch", {}) or {}

    raw_sources = data.get("sources")
    env_sources = os.environ.get("ICS_SOURCES")
    if env_sources:
        raw_sources = _sources_from_env(env_sources)

    timezone = str(os.environ.get("CALMERGE_TIMEZONE") or data.get("timezone", "UTC"))
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown timezone: {timezone}") from exc

    max_concurrent = int(_number(fetch.get("max_concurrent", MAX_CONCURRENT_FETCHES), "fetch.max_concurrent"))

    return AppConfig(
        sources=parse_sources(raw_sources),
        timezone=timezone,
        lookback_days=_number(
            os.environ.get("DEFAULT_LOOKBACK_DAYS", data.get("lookback_days", 7)), "lookback_days"
        ),
        lookahead_days=_number(
            os.environ.get("DEFAULT_LOOKAHEAD_DAYS", data.get("lookahead_days", 30)), "lookahead_days"
        ),
        request_deadline_seconds=_number(data.get("request_deadline_seconds", 30), "request_deadline_seconds"),
        cache=CacheConfig(
            ttl_seconds=_number(cache.get("ttl_seconds", 300), "cache.ttl_seconds"),
        ),
        fetch=FetchConfig(
            timeout_seconds=_number(fetch.get("timeout_seconds", 10), "fetch.timeout_seconds"),
            max_concurrent=max(1, min(max_concurrent, MAX_CONCURRENT_FETCHES)),
        ),
    )


def configure_logging() -> None:
    level_name = os.environ.get("CALMERGE_LOG_LEVEL", "INFO").upper().strip()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)-5s %(name)s :: %(message)s")

import logging
import re
import time
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional

from hearth.errors import InvalidInput

logger = logging.getLogger(__name__)

DAILY = timedelta(hours=24)

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_interval(text: str) -> timedelta:
    """Parse a duration such as ``30m``, ``6h`` or ``1h30m``.

    ``0``, empty and unparseable values all mean "manual refresh only".
    """
    text = (text or "").strip()
    if not text or text == "0":
        return timedelta(0)
    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        logger.warning(f"Ignoring unparseable background interval {text!r}")
        return timedelta(0)
    return timedelta(seconds=seconds)


def _interval_rule(age: timedelta, interval: timedelta) -> bool:
    return interval == timedelta(0) or age < interval


def _daily_rule(age: timedelta, interval: timedelta) -> bool:
    return age < DAILY


def _always_fresh(age: timedelta, interval: timedelta) -> bool:
    return True


class BackgroundProvider(str, Enum):
    DEFAULT = "default"
    BING_DAILY = "bing_daily"
    BING_RANDOM = "bing_random"
    UNSPLASH = "unsplash"
    PICSUM = "picsum"

    @classmethod
    def parse(cls, value: Optional[str]) -> "BackgroundProvider":
        value = (value or "").strip().lower()
        if not value:
            return cls.DEFAULT
        if value == "bing":
            # "bing" predates the daily/random split and means daily.
            return cls.BING_DAILY
        try:
            return cls(value)
        except ValueError:
            raise InvalidInput(f"unknown background provider: {value}") from None

    @property
    def is_remote(self) -> bool:
        return self is not BackgroundProvider.DEFAULT

    def is_fresh(self, age: timedelta, interval: timedelta) -> bool:
        return FRESHNESS_RULES[self](age, interval)

    def cache_key(self, query: str = "") -> str:
        key = f"bg:{self.value}"
        if self is BackgroundProvider.UNSPLASH:
            key = f"{key}:{query or ''}"
        return key


FRESHNESS_RULES: Dict[BackgroundProvider, Callable[[timedelta, timedelta], bool]] = {
    BackgroundProvider.DEFAULT: _always_fresh,
    BackgroundProvider.BING_DAILY: _daily_rule,
    BackgroundProvider.BING_RANDOM: _interval_rule,
    BackgroundProvider.UNSPLASH: _interval_rule,
    BackgroundProvider.PICSUM: _interval_rule,
}


class Freshness(str, Enum):
    MISS = "miss"
    FRESH = "fresh"
    STALE = "stale"


def classify(
    cached_file: Optional[Path],
    provider: BackgroundProvider,
    interval: timedelta,
    now: Optional[float] = None,
) -> Freshness:
    """Decide whether a cached background can be served as is.

    ``cached_file`` is the file the cache row points at, or None when there
    is no row. A row whose file has vanished counts as a miss.
    """
    if cached_file is None:
        return Freshness.MISS
    try:
        mtime = cached_file.stat().st_mtime
    except FileNotFoundError:
        return Freshness.MISS
    now = time.time() if now is None else now
    age = timedelta(seconds=max(0.0, now - mtime))
    if provider.is_fresh(age, interval):
        return Freshness.FRESH
    return Freshness.STALE

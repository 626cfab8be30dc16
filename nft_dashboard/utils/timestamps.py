"""
Timestamp normalization for blockchain records.

Records reach the dashboard with timestamps in several encodings: seconds since
the platform epoch (the chain launch date), Unix milliseconds, ISO-8601 strings
and the occasional human-readable date. Everything is normalized here to
integer milliseconds since the Unix epoch, so the magnitude heuristic exists
in exactly one place.
"""
import math
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Literal, Optional

# 2018-01-01T00:00:00Z
PLATFORM_EPOCH_MS = 1514764800000

# Numbers below this are platform-epoch seconds, at or above are Unix milliseconds.
# A genuine Unix-ms value below 1e10 (before 1970-04-26) misparses; known limitation.
EPOCH_SECONDS_THRESHOLD = 10_000_000_000

PeriodToken = Literal["24h", "7d", "30d", "all"]

PERIOD_WINDOWS: Dict[str, int] = {
    "24h": 24 * 60 * 60,
    "7d": 7 * 24 * 60 * 60,
    "30d": 30 * 24 * 60 * 60,
}

VALID_PERIODS = ("24h", "7d", "30d", "all")

_HUMAN_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


class InvalidPeriodError(ValueError):
    """Raised for a period token outside 24h/7d/30d/all."""


def parse_period(value: Optional[str]) -> PeriodToken:
    """Validate a period token; empty means ``all``."""
    if value is None or value == "":
        return "all"
    token = str(value).strip().lower()
    if token not in VALID_PERIODS:
        raise InvalidPeriodError(
            f"Invalid period '{value}'. Supported values are: {', '.join(VALID_PERIODS)}"
        )
    return token  # type: ignore[return-value]


@dataclass(frozen=True, slots=True)
class PeriodCutoff:
    """Lower bound of a rolling window in both timestamp encodings."""
    period: str
    cutoff_ms: int
    cutoff_platform_seconds: int


class TimestampNormalizer:
    """Converts heterogeneous timestamps into Unix milliseconds."""

    def __init__(self, platform_epoch_ms: int = PLATFORM_EPOCH_MS,
                 clock: Optional[Callable[[], float]] = None) -> None:
        self.platform_epoch_ms = int(platform_epoch_ms)
        self._clock = clock or time.time

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def normalize(self, value: Any) -> Optional[int]:
        """Return the canonical instant for ``value`` or None when it cannot be parsed."""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return self._from_number(value)
        if isinstance(value, datetime):
            return self._from_datetime(value)
        if isinstance(value, date):
            return self._from_datetime(datetime(value.year, value.month, value.day))
        if isinstance(value, str):
            return self._from_string(value)
        return None

    def _from_number(self, value: float) -> Optional[int]:
        if not math.isfinite(value):
            return None
        if value < EPOCH_SECONDS_THRESHOLD:
            instant = self.platform_epoch_ms + value * 1000
        else:
            instant = value
        instant = int(instant)
        if not self._in_range(instant):
            return None
        return instant

    def _from_string(self, value: str) -> Optional[int]:
        text = value.strip()
        if not text:
            return None
        try:
            return self._from_number(float(text))
        except ValueError:
            pass
        parsed = self.parse_iso(text)
        if parsed is not None:
            return parsed
        for fmt in _HUMAN_DATE_FORMATS:
            try:
                return self._from_datetime(datetime.strptime(text, fmt))
            except ValueError:
                continue
        return None

    def parse_iso(self, text: str) -> Optional[int]:
        """Parse an ISO-8601 string (trailing ``Z`` allowed); naive values are UTC."""
        try:
            if text.endswith('Z'):
                text = text[:-1] + '+00:00'
            return self._from_datetime(datetime.fromisoformat(text))
        except (ValueError, TypeError, AttributeError):
            return None

    def _from_datetime(self, value: datetime) -> Optional[int]:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        try:
            return int(value.timestamp() * 1000)
        except (OverflowError, OSError, ValueError):
            return None

    @staticmethod
    def _in_range(instant_ms: int) -> bool:
        # datetime supports years 1..9999
        return -62135596800000 <= instant_ms <= 253402300799999

    def to_datetime(self, instant_ms: int) -> datetime:
        return datetime.fromtimestamp(instant_ms / 1000, tz=timezone.utc)

    def to_iso_string(self, instant_ms: int) -> str:
        """Format an instant the way JavaScript's toISOString does."""
        dt = self.to_datetime(instant_ms)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"

    def to_platform_seconds(self, instant_ms: int) -> int:
        return math.floor((instant_ms - self.platform_epoch_ms) / 1000)

    def from_platform_seconds(self, seconds: float) -> int:
        return int(self.platform_epoch_ms + seconds * 1000)

    def from_period_token(self, period: Optional[str], now_ms: Optional[int] = None) -> PeriodCutoff:
        """Cutoff of the rolling window ending at ``now_ms`` (query time by default)."""
        token = parse_period(period)
        if token == "all":
            cutoff_ms = 0
        else:
            now = self.now_ms() if now_ms is None else now_ms
            cutoff_ms = now - PERIOD_WINDOWS[token] * 1000
        return PeriodCutoff(
            period=token,
            cutoff_ms=cutoff_ms,
            cutoff_platform_seconds=self.to_platform_seconds(cutoff_ms),
        )

    def now_iso(self) -> str:
        return self.to_iso_string(self.now_ms())

import datetime
import time
from collections.abc import Callable

# Wall clock source; cursor ages are compared against the backend's
# own wall-clock keep-alive.
Clock = Callable[[], float]


def timestamp() -> float:
    return time.time()


def from_timestamp(value: float, timezone=datetime.UTC) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(value, timezone)


def parse_keep_alive(keep_alive: str) -> float:
    """
    Convert an Elasticsearch time unit string ("30s", "5m", "1h") to seconds.

    Raises:
        ValueError: If the string has no known unit or a non-numeric amount
    """
    units = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}
    value = keep_alive.strip().lower()
    for suffix in ("ms", "s", "m", "h", "d"):
        if value.endswith(suffix):
            amount = value[: -len(suffix)]
            if amount.isdigit():
                return int(amount) * units[suffix]
            break
    raise ValueError(f"Invalid keep-alive value: {keep_alive!r}")

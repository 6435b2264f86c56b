"""
Time window helpers.

All stored timestamps are naive UTC. Aware inputs are converted to UTC,
naive inputs are assumed to already be UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from fleet_analytics.app.core.exceptions import DataValidationError

BUCKET_LENGTH = timedelta(hours=1)
DEFAULT_LOOKBACK = timedelta(days=30)


def to_utc_naive(ts: datetime) -> datetime:
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hour_window(ts: datetime) -> Tuple[datetime, datetime]:
    """
    Return the [start, end) clock-hour window containing ts.

    A reading belongs to exactly one window, decided only by the hour of
    its timestamp.

    Raises:
        DataValidationError: The window falls outside the representable range
    """
    try:
        start = to_utc_naive(ts).replace(minute=0, second=0, microsecond=0)
        return start, start + BUCKET_LENGTH
    except OverflowError:
        raise DataValidationError("Timestamp out of range", details={"timestamp": ts.isoformat()}) from None


def resolve_window(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> Tuple[datetime, datetime]:
    """Fill in the default 30 day lookback for query windows."""
    end = to_utc_naive(end) if end else utc_now()
    start = to_utc_naive(start) if start else end - DEFAULT_LOOKBACK
    return start, end

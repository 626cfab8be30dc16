"""
Activity chart aggregation: record counts per day or month for each dataset.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple

from nft_dashboard.cache.period_filter import FilterOptions, PeriodFilter
from nft_dashboard.utils.timestamps import parse_period

Granularity = Literal["day", "month"]

MONTHLY_THRESHOLD_DAYS = 90
_DAY_MS = 86_400_000
FUTURE_HORIZON_MS = _DAY_MS


def bucket_label(moment: datetime, granularity: Granularity) -> str:
    return moment.strftime("%Y-%m") if granularity == "month" else moment.strftime("%Y-%m-%d")


def bucket_labels(start: datetime, end: datetime, granularity: Granularity) -> List[str]:
    """Every bucket label from ``start`` to ``end`` inclusive."""
    labels = []
    if granularity == "month":
        year, month = start.year, start.month
        while (year, month) <= (end.year, end.month):
            labels.append(f"{year:04d}-{month:02d}")
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
        return labels

    day = start.date()
    while day <= end.date():
        labels.append(day.strftime("%Y-%m-%d"))
        day += timedelta(days=1)
    return labels


def choose_granularity(period: str, start_ms: int, end_ms: int) -> Granularity:
    if period == "all" and (end_ms - start_ms) / _DAY_MS > MONTHLY_THRESHOLD_DAYS:
        return "month"
    return "day"


def build_activity(datasets: Mapping[str, Tuple[Sequence[Any], Optional[FilterOptions]]],
                   period: Optional[str],
                   period_filter: PeriodFilter,
                   now_ms: Optional[int] = None) -> Dict[str, Any]:
    """Count already period-filtered records per bucket.

    Args:
        datasets: dataset name -> (records, filter options used to locate their timestamps)
        period: Period the records were filtered to
        period_filter: Supplies timestamp extraction and the period cutoff
        now_ms: End of the chart range, defaults to now

    Returns:
        ``{"period", "granularity", "labels", "series": {name: [counts]}, "undated": {name: n},
        "overflow": {name: n}}``; ``overflow`` counts records dated more than
        FUTURE_HORIZON_MS after the end of the range, which get no bucket.
    """
    token = parse_period(period)
    normalizer = period_filter.normalizer
    end_ms = normalizer.now_ms() if now_ms is None else now_ms
    horizon_ms = end_ms + FUTURE_HORIZON_MS

    instants: Dict[str, List[int]] = {}
    undated: Dict[str, int] = {}
    overflow: Dict[str, int] = {}
    for name, (records, options) in datasets.items():
        found = []
        missing = beyond = 0
        for record in records or []:
            instant = period_filter.record_instant(record, options or FilterOptions())
            if instant is None:
                missing += 1
            elif instant > horizon_ms:
                beyond += 1
            else:
                found.append(instant)
        instants[name] = found
        undated[name] = missing
        overflow[name] = beyond

    if token == "all":
        earliest = [min(values) for values in instants.values() if values]
        start_ms = min(earliest) if earliest else end_ms
    else:
        start_ms = normalizer.from_period_token(token, end_ms).cutoff_ms
    # records dated up to FUTURE_HORIZON_MS after "now" still get a bucket
    latest = [max(values) for values in instants.values() if values]
    end_ms = max([end_ms, *latest])

    granularity = choose_granularity(token, start_ms, end_ms)
    start = datetime.fromtimestamp(start_ms / 1000, tz=timezone.utc)
    end = datetime.fromtimestamp(end_ms / 1000, tz=timezone.utc)
    labels = bucket_labels(start, end, granularity)
    index = {label: i for i, label in enumerate(labels)}

    series: Dict[str, List[int]] = {}
    for name, values in instants.items():
        counts = [0] * len(labels)
        for instant in values:
            label = bucket_label(datetime.fromtimestamp(instant / 1000, tz=timezone.utc), granularity)
            if label in index:
                counts[index[label]] += 1
        series[name] = counts

    return {
        "period": token,
        "granularity": granularity,
        "labels": labels,
        "series": series,
        "undated": undated,
        "overflow": overflow,
    }

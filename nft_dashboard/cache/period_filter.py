"""
Rolling-window filtering of time-series datasets.

Filtering is pure: inputs are never mutated and the only state touched is the
optional fail-open counter. Records whose timestamp cannot be determined are
kept by default, since dashboard consumers rely on nothing being silently
dropped; ``FilterOptions.strict`` turns that off per call.
"""
import logging
from collections import Counter
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from nft_dashboard.utils.timestamps import TimestampNormalizer, parse_period

_OPTION_ALIASES = {
    "timestamp_field": "timestamp_field",
    "timestampField": "timestamp_field",
    "date_field": "date_field",
    "dateField": "date_field",
    "iso_date_field": "iso_date_field",
    "isoDateField": "iso_date_field",
    "array_field": "array_field",
    "arrayField": "array_field",
    "dataArrayField": "array_field",
    "strict": "strict",
}


@dataclass(frozen=True, slots=True)
class FilterOptions:
    """Field-name hints for locating a record's timestamp."""
    timestamp_field: str = "timestamp"
    date_field: str = "date"
    iso_date_field: Optional[str] = "timestampISO"
    array_field: Optional[str] = None
    strict: bool = False

    @classmethod
    def coerce(cls, options: Union["FilterOptions", Mapping[str, Any], None]) -> "FilterOptions":
        """Accept None, an existing instance, or a mapping with snake_case or camelCase keys."""
        if options is None:
            return cls()
        if isinstance(options, FilterOptions):
            return options
        kwargs = {}
        for key, value in options.items():
            field_name = _OPTION_ALIASES.get(key)
            if field_name is None:
                raise ValueError(f"Unknown filter option: {key}")
            if value is not None:
                kwargs[field_name] = value
        return cls(**kwargs)

    def with_array_field(self, array_field: Optional[str]) -> "FilterOptions":
        return replace(self, array_field=array_field)

    def cache_key(self) -> str:
        return f"{self.timestamp_field}|{self.date_field}|{self.iso_date_field}|{self.array_field}|{int(self.strict)}"


class FailOpenCounter:
    """Counts records kept only because no timestamp could be parsed."""

    def __init__(self):
        self.total = 0
        self.by_label: Counter = Counter()

    def record(self, count: int, label: Optional[str] = None) -> None:
        if count <= 0:
            return
        self.total += count
        if label:
            self.by_label[label] += count

    def reset(self) -> None:
        self.total = 0
        self.by_label.clear()

    def snapshot(self) -> Dict[str, Any]:
        return {"total": self.total, "by_dataset": dict(self.by_label)}


class PeriodFilter:
    """Filters records or response envelopes down to a rolling time window."""

    def __init__(self, normalizer: Optional[TimestampNormalizer] = None,
                 logger: Optional[logging.Logger] = None,
                 fail_open_counter: Optional[FailOpenCounter] = None):
        self.normalizer = normalizer or TimestampNormalizer()
        self.logger = logger or logging.getLogger(__name__)
        self.fail_open_counter = fail_open_counter or FailOpenCounter()

    def _candidate_fields(self, record: Mapping[str, Any], options: FilterOptions) -> Iterable[str]:
        explicit = [f for f in (options.iso_date_field, options.date_field, options.timestamp_field) if f]
        yield from explicit
        for key in record:
            if key in explicit or not isinstance(key, str):
                continue
            lowered = key.lower()
            if "date" in lowered or "time" in lowered:
                yield key

    def record_instant(self, record: Any, options: Optional[FilterOptions] = None) -> Optional[int]:
        """Instant of the first field that normalizes, in priority order."""
        if not isinstance(record, Mapping):
            return None
        options = options or FilterOptions()
        for field_name in self._candidate_fields(record, options):
            value = record.get(field_name)
            if value is None or value == "":
                continue
            instant = self.normalizer.normalize(value)
            if instant is not None:
                return instant
        return None

    def _filter_list(self, records: List[Any], cutoff_ms: int,
                     options: FilterOptions) -> Tuple[List[Any], int]:
        kept = []
        unparsed = 0
        for record in records:
            if not isinstance(record, Mapping):
                kept.append(record)
                continue
            instant = self.record_instant(record, options)
            if instant is None:
                unparsed += 1
                if not options.strict:
                    kept.append(record)
            elif instant >= cutoff_ms:
                kept.append(record)
        return kept, unparsed

    def _report_unparsed(self, unparsed: int, options: FilterOptions, label: Optional[str]) -> None:
        if not unparsed:
            return
        if options.strict:
            self.logger.debug(f"Dropped {unparsed} records without a parseable timestamp"
                              f"{f' from {label}' if label else ''}")
            return
        self.fail_open_counter.record(unparsed, label)
        self.logger.debug(f"Kept {unparsed} records without a parseable timestamp"
                          f"{f' in {label}' if label else ''}")

    def filter_records(self, records: Optional[List[Any]], period: Optional[str],
                       options: Union[FilterOptions, Mapping[str, Any], None] = None,
                       now_ms: Optional[int] = None, label: Optional[str] = None) -> Optional[List[Any]]:
        """Records within ``[now - window, ...]``; ``all`` returns the input unchanged."""
        token = parse_period(period)
        if token == "all" or not records:
            return records
        options = FilterOptions.coerce(options)
        cutoff = self.normalizer.from_period_token(token, now_ms)
        kept, unparsed = self._filter_list(records, cutoff.cutoff_ms, options)
        self._report_unparsed(unparsed, options, label)
        return kept

    def filter_payload(self, payload: Any, period: Optional[str],
                       options: Union[FilterOptions, Mapping[str, Any], None] = None,
                       now_ms: Optional[int] = None, label: Optional[str] = None) -> Any:
        """Filter a bare list or every record array inside an envelope dict."""
        token = parse_period(period)
        if token == "all":
            return payload
        options = FilterOptions.coerce(options)
        if isinstance(payload, list):
            return self.filter_records(payload, token, options, now_ms, label)
        if not isinstance(payload, Mapping):
            return payload

        envelope = dict(payload)
        if options.array_field:
            fields = [options.array_field] if isinstance(envelope.get(options.array_field), list) else []
        else:
            fields = [key for key, value in envelope.items() if isinstance(value, list)]
        if not fields:
            return envelope

        cutoff = self.normalizer.from_period_token(token, now_ms)
        total_unparsed = 0
        for field_name in fields:
            kept, unparsed = self._filter_list(envelope[field_name], cutoff.cutoff_ms, options)
            envelope[field_name] = kept
            total_unparsed += unparsed
        self._report_unparsed(total_unparsed, options, label)

        if "count" in envelope:
            envelope["count"] = len(envelope[fields[0]])
        return envelope

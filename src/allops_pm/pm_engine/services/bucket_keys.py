"""
Bucket key derivation for imported monitoring snapshots.

Import payloads come from several exporters that disagree on where (and how)
they put the collection date. Each import family has a rule naming the record
to inspect, the candidate date fields in priority order and the bucket
granularity. Parsing is best-effort: a value either yields a calendar date or
nothing, and a record with no parseable value has an unknown (None) bucket
unless its rule falls back to the current month.
"""

from __future__ import annotations

import enum
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple


class Granularity(str, enum.Enum):
    MONTH = "month"
    DAY = "day"


class RecordPick(str, enum.Enum):
    FIRST = "first"
    LAST = "last"
    EACH = "each"


@dataclass(frozen=True)
class BucketRule:
    fields: Tuple[str, ...]
    granularity: Granularity
    pick: RecordPick
    fallback_to_current_month: bool = False


CONTENT_SIZING_RULE = BucketRule(
    fields=(
        "year_month_file",
        "yearMonth",
        "year_month",
        "month",
        "report_date",
        "date",
        "timestamp",
        "created_at",
    ),
    granularity=Granularity.MONTH,
    pick=RecordPick.EACH,
)

API_RESPONSE_RULE = BucketRule(
    fields=("api_date", "apiDate", "date", "collected_at", "timestamp", "created_at"),
    granularity=Granularity.DAY,
    pick=RecordPick.FIRST,
)

# Falls back to the current month when nothing parses, so repeated imports of
# undated payloads within a month replace each other.
OTHER_APP_RESPONSE_RULE = BucketRule(
    fields=(
        "year_month_file",
        "yearMonth",
        "year_month",
        "month",
        "date",
        "timestamp",
        "created_at",
    ),
    granularity=Granularity.MONTH,
    pick=RecordPick.LAST,
    fallback_to_current_month=True,
)

_PREFIX_RE = re.compile(r"^\s*(\d{4})[-/](\d{1,2})(?:[-/](\d{1,2}))?(?!\d)")

# All-digit values: 10 or 13 digits are epoch seconds or milliseconds, the
# rest are compact calendar forms.
_EPOCH_DIGITS = (10, 13)
_COMPACT_FORMATS: Dict[int, str] = {6: "%Y%m", 8: "%Y%m%d"}

_STRPTIME_FORMATS: Tuple[str, ...] = (
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%m/%Y",
    "%b %Y",
    "%B %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%Y-%m-%d %H:%M:%S.%f",
)

# Epoch values above this are taken as milliseconds.
_EPOCH_MS_THRESHOLD = 100_000_000_000


def _from_epoch(value: float) -> Optional[date]:
    if value <= 0:
        return None
    if value > _EPOCH_MS_THRESHOLD:
        value = value / 1000.0
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc).date()
    except (OverflowError, OSError, ValueError):
        return None


def _parse_prefix(text: str, granularity: Granularity) -> Optional[date]:
    match = _PREFIX_RE.match(text)
    if not match:
        return None
    year, month, day = match.group(1), match.group(2), match.group(3)
    if granularity == Granularity.DAY and day is None:
        return None
    try:
        return date(int(year), int(month), int(day) if day else 1)
    except ValueError:
        return None


def _parse_digits(text: str) -> Optional[date]:
    if len(text) in _EPOCH_DIGITS:
        return _from_epoch(float(text))
    fmt = _COMPACT_FORMATS.get(len(text))
    if fmt is None:
        return None
    try:
        return datetime.strptime(text, fmt).date()
    except ValueError:
        return None


def _parse_general(text: str) -> Optional[date]:
    if text.isascii() and text.isdigit():
        return _parse_digits(text)

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    for fmt in _STRPTIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    try:
        return parsedate_to_datetime(text).date()
    except (TypeError, ValueError, IndexError):
        return None


def parse_date_value(value: Any, granularity: Granularity = Granularity.MONTH) -> Optional[date]:
    """Best-effort conversion of one raw field value to a calendar date."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0:
            return None
        return _parse_digits(str(int(value)))
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    return _parse_prefix(text, granularity) or _parse_general(text)


def format_bucket(value: date, granularity: Granularity) -> str:
    if granularity == Granularity.DAY:
        return value.strftime("%Y-%m-%d")
    return value.strftime("%Y-%m")


def _lookup(record: Mapping[str, Any], field: str) -> Any:
    if field in record:
        return record[field]
    lowered = field.lower()
    for key, value in record.items():
        if isinstance(key, str) and key.lower() == lowered:
            return value
    return None


def derive_bucket(
    record: Any, rule: BucketRule, *, today: Optional[date] = None
) -> Optional[str]:
    """Bucket for a single record: first field (in rule order) that parses wins."""
    if isinstance(record, Mapping):
        for field in rule.fields:
            parsed = parse_date_value(_lookup(record, field), rule.granularity)
            if parsed is not None:
                return format_bucket(parsed, rule.granularity)

    if rule.fallback_to_current_month:
        return format_bucket(today or date.today(), Granularity.MONTH)
    return None


def derive_batch_bucket(
    records: Sequence[Any], rule: BucketRule, *, today: Optional[date] = None
) -> Optional[str]:
    """Bucket for a whole batch, read from the record the rule designates."""
    if not records:
        return derive_bucket(None, rule, today=today)
    if rule.pick == RecordPick.LAST:
        return derive_bucket(records[-1], rule, today=today)
    return derive_bucket(records[0], rule, today=today)

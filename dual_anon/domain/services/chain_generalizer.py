"""Chain Generalizer (Stage-2 chain anonymization).

Derives the record published to the immutable ledger from a Stage-1 record.
Every transformation is a further generalization of a Stage-1 value; nothing
is restored to more precision.

Security Impact:
    - 10-year age buckets, month-precision dates
    - Region, District, City and Location are dropped; Country is kept
    - Occupation collapsed into broad buckets
    - Numeric results rounded

Architecture:
    - Consumes Stage1Record only; raw records never reach this module
    - Missing generalized fields are passed through and reported as events
      (strict mode raises ConsistencyError instead)
"""

import logging
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Any, Mapping, Optional, Union

from dual_anon.domain import events, fields
from dual_anon.domain.enums import ChainOccupationCategory, EventLevel, OccupationCategory
from dual_anon.domain.events import AnonymizationEvent, EventSinkPort
from dual_anon.domain.ports import ConsistencyError
from dual_anon.domain.records import Stage1Record, Stage2Record
from dual_anon.domain.utils import parse_date

logger = logging.getLogger(__name__)

AGE_RANGE_PATTERN = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")

CHAIN_OCCUPATION_KEYWORDS: tuple[tuple[ChainOccupationCategory, tuple[str, ...]], ...] = (
    (ChainOccupationCategory.HEALTHCARE, ("healthcare", "medical", "doctor", "nurse")),
    (ChainOccupationCategory.EDUCATION, ("education", "teacher", "professor")),
    (ChainOccupationCategory.AGRICULTURE, ("agriculture", "farmer", "farming")),
    (ChainOccupationCategory.TECHNOLOGY, ("technology", "tech", "software", "engineer")),
    (ChainOccupationCategory.BUSINESS, ("business", "entrepreneur", "merchant", "trader")),
)

# Generalized fields every Stage-1 record is expected to carry
REQUIRED_STAGE1_FIELDS = (fields.AGE_RANGE, fields.COUNTRY, fields.GENDER)


def widen_age_range(age_range: Optional[str]) -> Optional[str]:
    """Widen a 5-year bucket to a 10-year bucket.

    "<1" becomes "<10", "90+" stays "90+", "L-U" becomes
    "floor(L/10)*10-(floor(L/10)*10+9)". Unrecognized values are returned
    unchanged, so the function is idempotent.
    """
    if age_range is None:
        return None
    text = str(age_range).strip()
    if text in ("<1", "<10"):
        return "<10"
    if text == "90+":
        return text

    match = AGE_RANGE_PATTERN.match(text)
    if not match:
        return age_range
    lower = (int(match.group(1)) // 10) * 10
    return f"{lower}-{lower + 9}"


def round_date_to_month(value: Optional[str]) -> Optional[str]:
    """Round a date string to "YYYY-MM"; None if it cannot be parsed."""
    parsed = parse_date(value)
    if parsed is None:
        return None
    return f"{parsed.year:04d}-{parsed.month:02d}"


def generalize_occupation_further(category: Optional[str]) -> str:
    """Collapse a Stage-1 occupation bucket into a broad chain bucket.

    Missing or "Unknown" stays "Unknown"; unmatched categories become "Other".
    """
    if category is None or not str(category).strip():
        return ChainOccupationCategory.UNKNOWN.value
    if str(category).strip() == OccupationCategory.UNKNOWN.value:
        return ChainOccupationCategory.UNKNOWN.value

    lowered = str(category).lower()
    for bucket, keywords in CHAIN_OCCUPATION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return bucket.value
    return ChainOccupationCategory.OTHER.value


def round_numeric_result(value: Any) -> Any:
    """Round a positive numeric result.

    Values below 1 keep 2 decimals, values below 10 keep 1 decimal, larger
    values are rounded to the nearest integer (half up). Non-numeric,
    non-finite and non-positive values are returned unchanged.
    """
    if value is None or isinstance(value, bool):
        return value
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return value
    if not number.is_finite() or number <= 0:
        return value

    if number < 1:
        quantum = Decimal("0.01")
    elif number < 10:
        quantum = Decimal("0.1")
    else:
        quantum = Decimal("1")
    # Precision must cover every integer digit plus the kept decimals
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, number.adjusted() + 4)
        rounded = number.quantize(quantum, rounding=ROUND_HALF_UP)

    if isinstance(value, (int, float)):
        return int(rounded) if quantum == 1 else float(rounded)
    return str(rounded)


class ChainGeneralizer:
    """Produces Stage-2 records from Stage-1 records.

    Parameters:
        strict: Raise ConsistencyError when a generalized field is missing
            instead of passing the record through
        event_sink: Sink for unparseable-date and consistency events
    """

    def __init__(self, strict: bool = False, event_sink: Optional[EventSinkPort] = None):
        self.strict = strict
        self.event_sink = event_sink

    def generalize(
        self,
        record: Union[Stage1Record, Mapping[str, Any]],
        batch_id: Optional[str] = None,
    ) -> Stage2Record:
        """Generalize one Stage-1 record.

        Parameters:
            record: Stage-1 record (or its flattened field mapping)
            batch_id: Batch identifier attached to events

        Returns:
            Stage2Record: Chain-anonymized record

        Raises:
            ConsistencyError: In strict mode, if a generalized field is missing
        """
        data = record.to_dict() if isinstance(record, Stage1Record) else dict(record)
        anonymous_id = data.get(fields.ANONYMOUS_PID)

        self._check_consistency(data, anonymous_id, batch_id)

        if fields.AGE_RANGE in data:
            data[fields.AGE_RANGE] = widen_age_range(data[fields.AGE_RANGE])

        for field_name in fields.DATE_FIELDS:
            if field_name not in data:
                continue
            rounded = round_date_to_month(data[field_name])
            if rounded is None:
                self._emit(
                    events.CHAIN_UNPARSEABLE_DATE,
                    EventLevel.WARNING,
                    f"Unparseable date in {field_name}; value passed through",
                    anonymous_id,
                    batch_id,
                    {"field": field_name},
                )
            else:
                data[field_name] = rounded

        for field_name in fields.SUB_COUNTRY_LOCATION_FIELDS:
            data.pop(field_name, None)

        if fields.OCCUPATION_CATEGORY in data:
            data[fields.OCCUPATION_CATEGORY] = generalize_occupation_further(
                data[fields.OCCUPATION_CATEGORY]
            )

        if fields.RESULT in data:
            data[fields.RESULT] = round_numeric_result(data[fields.RESULT])

        return Stage2Record.model_validate(data)

    def _check_consistency(
        self, data: dict[str, Any], anonymous_id: Optional[str], batch_id: Optional[str]
    ) -> None:
        for field_name in REQUIRED_STAGE1_FIELDS:
            if data.get(field_name):
                continue
            message = f"Stage-1 record is missing {field_name}"
            if self.strict:
                raise ConsistencyError(message, field_name=field_name)
            self._emit(
                events.CHAIN_CONSISTENCY,
                EventLevel.WARNING,
                f"{message}; field passed through",
                anonymous_id,
                batch_id,
                {"field": field_name},
            )

    def _emit(
        self,
        event_type: str,
        level: EventLevel,
        message: str,
        anonymous_id: Optional[str],
        batch_id: Optional[str],
        details: dict[str, Any],
    ) -> None:
        logger.debug(f"{event_type}: {message} ({anonymous_id})")
        if self.event_sink is not None:
            self.event_sink.emit(AnonymizationEvent(
                event_type=event_type,
                level=level,
                message=message,
                batch_id=batch_id,
                anonymous_id=anonymous_id,
                details=details,
            ))

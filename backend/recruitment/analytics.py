from __future__ import annotations

import math
import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

from recruitment.errors import UnsupportedAggregation
from recruitment.fields import input_fields, option_values, to_number
from recruitment.schemas import (
    Campaign,
    FieldDefinition,
    FieldHistogram,
    FieldType,
    HistogramBucket,
    Response,
    ResponseStatus,
    SelectableField,
    localized,
)

NUMBER_BUCKETS = 5
SINGLE_CHOICE_TYPES = {FieldType.dropdown, FieldType.multiple_choice}


def aggregate_status(responses: Iterable[Response]) -> Dict[str, int]:
    counts = {status.value: 0 for status in ResponseStatus}
    for response in responses:
        counts[ResponseStatus(response.status).value] += 1
    return counts


def _numeric_range(field: FieldDefinition) -> Optional[tuple]:
    lo, hi = field.settings.min, field.settings.max
    if lo is None or hi is None:
        return None
    if not (math.isfinite(lo) and math.isfinite(hi)) or lo >= hi:
        return None
    return lo, hi


def is_aggregatable(field: FieldDefinition) -> bool:
    if field.type in SINGLE_CHOICE_TYPES or field.type == FieldType.checkboxes:
        return True
    return field.type == FieldType.number and _numeric_range(field) is not None


def selectable_fields(fields: Sequence[FieldDefinition]) -> List[SelectableField]:
    """Fields a caller may pick for a histogram."""
    return [
        SelectableField(id=f.id, label=localized(f.label) or f.id, type=f.type)
        for f in input_fields(fields)
        if is_aggregatable(f)
    ]


def _answered_values(responses: Iterable[Response], field_id: str) -> List[Any]:
    values = []
    for response in responses:
        answer = response.answer_for(field_id)
        if answer is None or answer.value in ("", [], None):
            continue
        values.append(answer.value)
    return values


def _choice_buckets(field: FieldDefinition, counts: Counter) -> List[HistogramBucket]:
    buckets = [HistogramBucket(label=option, count=counts.get(option, 0)) for option in option_values(field)]
    known = {b.label for b in buckets}
    # values stored before an option was renamed or removed
    for value, count in counts.items():
        if value not in known:
            buckets.append(HistogramBucket(label=value, count=count))
    return buckets


def _number_buckets(lo: float, hi: float) -> List[HistogramBucket]:
    width = (hi - lo) / NUMBER_BUCKETS
    buckets = []
    for i in range(NUMBER_BUCKETS):
        lower = lo + i * width
        upper = hi if i == NUMBER_BUCKETS - 1 else lower + width
        buckets.append(HistogramBucket(label=f"{lower:g}-{upper:g}", lower=lower, upper=upper))
    return buckets


def aggregate_field(responses: Iterable[Response], field: FieldDefinition) -> FieldHistogram:
    """
    Histogram of one field's answers.

    Only responses that answered the field count toward `answered`.
    Checkbox answers add one count per selected option. Number fields are
    split into five equal-width buckets over [min, max]; the last bucket
    includes max, and values outside the range are counted in outOfRange.
    """
    if not is_aggregatable(field):
        raise UnsupportedAggregation(f"Field '{field.id}' of type {field.type.value} cannot be aggregated")

    values = _answered_values(responses, field.id)
    histogram = FieldHistogram(
        fieldId=field.id,
        fieldType=field.type,
        label=localized(field.label) or field.id,
        answered=len(values),
    )

    if field.type == FieldType.number:
        lo, hi = _numeric_range(field)
        buckets = _number_buckets(lo, hi)
        for value in values:
            number = to_number(value)
            if number is None or number < lo or number > hi:
                histogram.outOfRange += 1
                continue
            index = min(int((number - lo) * NUMBER_BUCKETS / (hi - lo)), NUMBER_BUCKETS - 1)
            buckets[index].count += 1
        histogram.buckets = buckets
        return histogram

    counts: Counter = Counter()
    for value in values:
        if field.type == FieldType.checkboxes:
            counts.update(value if isinstance(value, list) else [value])
        else:
            counts[value if isinstance(value, str) else ", ".join(value)] += 1
    histogram.buckets = _choice_buckets(field, counts)
    return histogram


def submissions_by_date(responses: Iterable[Response]) -> Dict[str, int]:
    counts = Counter(response.submittedAt.date().isoformat() for response in responses)
    return dict(sorted(counts.items()))


def detect_device(user_agent: Optional[str]) -> str:
    if not user_agent:
        return "Unknown"
    if re.search(r"Mobile|Android|iPhone|iPad", user_agent):
        return "Mobile"
    if "Tablet" in user_agent:
        return "Tablet"
    return "Desktop"


def device_breakdown(responses: Iterable[Response]) -> Dict[str, int]:
    return dict(Counter(detect_device(response.userAgent) for response in responses))


def summarize(campaign: Campaign, responses: Sequence[Response]) -> Dict[str, Any]:
    """Overview used by the campaign analytics endpoint."""
    return {
        "campaignId": campaign.id,
        "totalSubmissions": len(responses),
        "byStatus": aggregate_status(responses),
        "submissionsByDate": submissions_by_date(responses),
        "deviceBreakdown": device_breakdown(responses),
        "selectableFields": [f.model_dump() for f in selectable_fields(campaign.fields)],
        "fieldAnalytics": [
            aggregate_field(responses, f).model_dump()
            for f in input_fields(campaign.fields)
            if is_aggregatable(f)
        ],
    }

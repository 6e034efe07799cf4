from __future__ import annotations

import calendar
import csv
import io
import json
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from recruitment.fields import input_fields
from recruitment.lifecycle import utcnow
from recruitment.schemas import Campaign, DateRange, FieldDefinition, Response, as_naive_utc, localized

RESPONSE_COLUMNS = ["id", "submittedAt", "status", "userName", "userEmail"]
MULTI_VALUE_SEPARATOR = ", "


def _one_month_before(now: datetime) -> datetime:
    year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def range_start(date_range: DateRange, now: datetime) -> Optional[datetime]:
    date_range = DateRange(date_range)
    if date_range == DateRange.today:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if date_range == DateRange.last_week:
        return now - timedelta(days=7)
    if date_range == DateRange.last_month:
        return _one_month_before(now)
    return None


def filter_by_range(
    responses: Iterable[Response],
    date_range: DateRange = DateRange.all,
    now: Optional[datetime] = None,
) -> List[Response]:
    """Responses submitted inside the range; always a new list, the input is left untouched."""
    start = range_start(date_range, as_naive_utc(now or utcnow()))
    if start is None:
        return list(responses)
    return [r for r in responses if as_naive_utc(r.submittedAt) >= start]


def search_responses(responses: Iterable[Response], term: Optional[str]) -> List[Response]:
    """Case-insensitive match on applicant name, email or any answer value."""
    needle = (term or "").strip().lower()
    if not needle:
        return list(responses)
    matches = []
    for response in responses:
        haystack = [response.userName or "", response.userEmail or ""]
        for answer in response.answers:
            haystack.extend(answer.value if isinstance(answer.value, list) else [answer.value])
        if any(needle in text.lower() for text in haystack):
            matches.append(response)
    return matches


def format_answer(response: Response, field_id: str) -> str:
    answer = response.answer_for(field_id)
    if answer is None or answer.value is None:
        return ""
    if isinstance(answer.value, list):
        return MULTI_VALUE_SEPARATOR.join(answer.value)
    return answer.value


def export_csv(responses: Iterable[Response], fields: Sequence[FieldDefinition]) -> str:
    columns = input_fields(fields)
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(RESPONSE_COLUMNS + [localized(f.label) or f.id for f in columns])
    for response in responses:
        writer.writerow([
            response.id,
            response.submittedAt.isoformat(),
            response.status.value,
            response.userName or "",
            response.userEmail or "",
        ] + [format_answer(response, f.id) for f in columns])
    return buffer.getvalue()


def build_metadata(
    campaign: Campaign,
    date_range: DateRange = DateRange.all,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    return {
        "exportedAt": (now or utcnow()).isoformat(),
        "range": DateRange(date_range).value,
        "source": {
            "type": "campaign",
            "id": campaign.id,
            "title": localized(campaign.title),
        },
    }


def export_json(
    responses: Iterable[Response],
    fields: Sequence[FieldDefinition],
    metadata: Dict[str, Any],
) -> str:
    # serialize everything before returning so callers never see a partial document
    items = [r.model_dump(mode="json") for r in responses]
    payload = {
        "metadata": {**metadata, "totalCount": len(items)},
        "fields": [f.model_dump(mode="json") for f in fields],
        "responses": items,
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def export_filename(title: str, fmt: str, now: Optional[datetime] = None) -> str:
    # ascii only, the name ends up in a Content-Disposition header
    slug = re.sub(r"[^a-z0-9-]+", "", re.sub(r"\s+", "-", (title or "").strip().lower())) or "campaign"
    return f"recruitment-responses-{slug}-{(now or utcnow()):%Y-%m-%d}.{fmt}"

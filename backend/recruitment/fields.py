from __future__ import annotations

import fnmatch
import math
import mimetypes
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from email_validator import EmailNotValidError, validate_email

from recruitment.config import settings
from recruitment.errors import FieldValidationError
from recruitment.schemas import (
    CHOICE_TYPES,
    AnswerValue,
    FieldDefinition,
    FieldType,
    UploadedFile,
    localized,
)

_PHONE_CHARS = re.compile(r"^\+?[0-9\s\-().]+$")


def to_number(x: Any) -> Optional[float]:
    # allow numeric strings like "12.3"
    if isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        value = float(x)
    elif isinstance(x, str):
        try:
            value = float(x.strip())
        except ValueError:
            return None
    else:
        return None
    return value if math.isfinite(value) else None


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


def input_fields(fields: Sequence[FieldDefinition]) -> List[FieldDefinition]:
    """Fields that take an answer, in form order."""
    return [f for f in fields if f.type != FieldType.section_break]


def is_choice_field(field: FieldDefinition) -> bool:
    return field.type in CHOICE_TYPES


def option_values(field: FieldDefinition) -> List[str]:
    """Canonical (default-language) option values, in declared order."""
    return [localized(option) for option in field.options]


def _match_option(field: FieldDefinition, value: str) -> Optional[str]:
    # an answer may use any translation of an option; store the canonical one
    for option in field.options:
        if value in option.values():
            return localized(option)
    return None


def _fail(field: FieldDefinition, code: str, message: str) -> FieldValidationError:
    return FieldValidationError(code, message, field_id=field.id)


# ------------------------------------------------------------
# per-type validators: (field, value) -> normalized value
# ------------------------------------------------------------

def _scalar_text(field: FieldDefinition, value: Any) -> str:
    if not isinstance(value, str):
        raise _fail(field, FieldValidationError.INVALID_FORMAT, "Expected a single text value")
    return value.strip()


def _validate_text(field: FieldDefinition, value: Any) -> str:
    return _scalar_text(field, value)


def _validate_email(field: FieldDefinition, value: Any) -> str:
    text = _scalar_text(field, value)
    try:
        result = validate_email(text, check_deliverability=False)
    except EmailNotValidError as e:
        raise _fail(field, FieldValidationError.INVALID_FORMAT, f"Invalid email address: {e}")
    return result.normalized


def _validate_phone(field: FieldDefinition, value: Any) -> str:
    text = _scalar_text(field, value)
    digits = sum(ch.isdigit() for ch in text)
    if not _PHONE_CHARS.match(text) or not 7 <= digits <= 15:
        raise _fail(field, FieldValidationError.INVALID_FORMAT, "Invalid phone number")
    return text


def _validate_number(field: FieldDefinition, value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    text = _scalar_text(field, value)
    if to_number(text) is None:
        raise _fail(field, FieldValidationError.INVALID_FORMAT, "Expected a number")
    return text


def _validate_date(field: FieldDefinition, value: Any) -> str:
    text = _scalar_text(field, value)
    try:
        if "T" in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
        return date.fromisoformat(text).isoformat()
    except ValueError:
        raise _fail(field, FieldValidationError.INVALID_FORMAT, "Expected a date in YYYY-MM-DD format")


def _validate_single_choice(field: FieldDefinition, value: Any) -> str:
    text = _scalar_text(field, value)
    matched = _match_option(field, text)
    if matched is None:
        raise _fail(field, FieldValidationError.INVALID_OPTION, f"'{text}' is not one of the available options")
    return matched


def _validate_checkboxes(field: FieldDefinition, value: Any) -> List[str]:
    if isinstance(value, str) or not isinstance(value, (list, tuple, set)):
        raise _fail(field, FieldValidationError.INVALID_FORMAT, "Expected a list of selected options")
    selected: List[str] = []
    for item in value:
        if not isinstance(item, str):
            raise _fail(field, FieldValidationError.INVALID_FORMAT, "Selected options must be text")
        matched = _match_option(field, item.strip())
        if matched is None:
            raise _fail(field, FieldValidationError.INVALID_OPTION, f"'{item}' is not one of the available options")
        if matched not in selected:
            selected.append(matched)
    return selected


def accepts_file_type(accepted: Sequence[str], filename: str, content_type: Optional[str]) -> bool:
    """Match a file against MIME patterns ("image/*", "application/pdf") or extensions (".pdf")."""
    if not accepted:
        return True
    suffix = Path(filename).suffix.lower()
    mime = content_type or mimetypes.guess_type(filename)[0] or ""
    for pattern in accepted:
        pattern = pattern.strip().lower()
        if not pattern:
            continue
        if pattern.startswith("."):
            if suffix == pattern:
                return True
        elif fnmatch.fnmatch(mime.lower(), pattern):
            return True
    return False


def _validate_file(field: FieldDefinition, value: Any) -> UploadedFile:
    if not isinstance(value, UploadedFile):
        raise _fail(field, FieldValidationError.INVALID_FORMAT, "Expected an uploaded file")
    limit = field.maxSizeBytes if field.maxSizeBytes is not None else settings.MAX_UPLOAD_SIZE
    if value.sizeBytes > limit:
        raise _fail(field, FieldValidationError.FILE_TOO_LARGE, f"File exceeds the maximum size of {limit} bytes")
    if not accepts_file_type(field.acceptedTypes, value.filename, value.contentType):
        raise _fail(
            field,
            FieldValidationError.UNSUPPORTED_FILE_TYPE,
            f"File type not accepted; allowed: {', '.join(field.acceptedTypes)}",
        )
    return value


VALIDATORS: Dict[FieldType, Callable[[FieldDefinition, Any], Any]] = {
    FieldType.short_text: _validate_text,
    FieldType.long_text: _validate_text,
    FieldType.email: _validate_email,
    FieldType.phone: _validate_phone,
    FieldType.number: _validate_number,
    FieldType.date: _validate_date,
    FieldType.dropdown: _validate_single_choice,
    FieldType.multiple_choice: _validate_single_choice,
    FieldType.checkboxes: _validate_checkboxes,
    FieldType.file_upload: _validate_file,
}


def validate(field: FieldDefinition, value: Any) -> Optional[Any]:
    """
    Validate one candidate value against its field definition.

    Returns the normalized value, or None when an optional field was left
    empty. Raises FieldValidationError on the first problem found.
    """
    if field.type == FieldType.section_break:
        return None

    if is_missing(value):
        if field.required:
            raise _fail(field, FieldValidationError.MISSING_VALUE, "This field is required")
        return None

    return VALIDATORS[field.type](field, value)


def answer_value(value: Any) -> AnswerValue:
    """Stored shape of a validated value; files are recorded by original name."""
    if isinstance(value, UploadedFile):
        return value.filename
    return value

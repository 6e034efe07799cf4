from typing import Any, Dict, List, Optional


class RecruitmentError(Exception):
    """Base class for business-rule failures raised by the engine."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FieldValidationError(RecruitmentError):
    MISSING_VALUE = "missing_value"
    INVALID_OPTION = "invalid_option"
    INVALID_FORMAT = "invalid_format"
    FILE_TOO_LARGE = "file_too_large"
    UNSUPPORTED_FILE_TYPE = "unsupported_file_type"
    UNKNOWN_FIELD = "unknown_field"

    def __init__(self, code: str, message: str, field_id: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.field_id = field_id

    def to_dict(self) -> Dict[str, Any]:
        return {"fieldId": self.field_id, "code": self.code, "message": self.message}


class SubmissionInvalid(RecruitmentError):
    """One or more answers failed validation. Carries every failing field."""

    def __init__(self, errors: List[FieldValidationError]):
        super().__init__(f"{len(errors)} field(s) failed validation")
        self.errors = errors


class CampaignNotOpen(RecruitmentError):
    pass


class CampaignFull(RecruitmentError):
    pass


class DuplicateSubmission(RecruitmentError):
    pass


class InvalidRating(RecruitmentError):
    pass


class InvalidTag(RecruitmentError):
    pass


class NotFound(RecruitmentError):
    pass


class UnsupportedAggregation(RecruitmentError):
    pass

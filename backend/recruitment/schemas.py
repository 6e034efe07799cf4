from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator
from typing import Annotated, Any, Dict, List, Optional, Union
from datetime import datetime, timezone
from enum import Enum

from recruitment.config import settings


def _coerce_localized(value: Any) -> Any:
    # Plain strings are stored under the default language
    if isinstance(value, str):
        return {settings.DEFAULT_LANGUAGE: value}
    return value


LocalizedText = Annotated[Dict[str, str], BeforeValidator(_coerce_localized)]


def as_naive_utc(value: datetime) -> datetime:
    """Naive UTC form of a timestamp, the form stored in Mongo."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def localized(text: Optional[Dict[str, str]], language: Optional[str] = None) -> str:
    """Pick the translation for `language`, falling back to the first non-empty one."""
    if not text:
        return ""
    language = language or settings.DEFAULT_LANGUAGE
    if text.get(language):
        return text[language]
    for value in text.values():
        if value:
            return value
    return ""


# ============================================================
# FIELD SCHEMA
# ============================================================

class FieldType(str, Enum):
    section_break = "section-break"
    short_text = "short-text"
    email = "email"
    phone = "phone"
    long_text = "long-text"
    dropdown = "dropdown"
    multiple_choice = "multiple-choice"
    checkboxes = "checkboxes"
    date = "date"
    number = "number"
    file_upload = "file-upload"


CHOICE_TYPES = {FieldType.dropdown, FieldType.multiple_choice, FieldType.checkboxes}


class FieldSettings(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class FieldDefinition(BaseModel):
    id: str = Field(..., min_length=1)
    type: FieldType
    label: LocalizedText = Field(default_factory=dict)
    placeholder: Optional[LocalizedText] = None
    helpText: Optional[LocalizedText] = None
    required: bool = False
    options: List[LocalizedText] = Field(default_factory=list)
    acceptedTypes: List[str] = Field(default_factory=list)
    maxSizeBytes: Optional[int] = Field(None, ge=0)
    settings: FieldSettings = Field(default_factory=FieldSettings)

    @model_validator(mode="after")
    def _check_options(self):
        if self.type in CHOICE_TYPES and not self.options:
            raise ValueError(f"Field '{self.id}' of type {self.type.value} needs at least one option")
        lo, hi = self.settings.min, self.settings.max
        if lo is not None and hi is not None and lo > hi:
            raise ValueError(f"Field '{self.id}' has settings.min greater than settings.max")
        return self


# ============================================================
# CAMPAIGN SCHEMAS
# ============================================================

class CampaignRole(str, Enum):
    crew = "crew"
    volunteer = "volunteer"
    participant = "participant"


class CampaignStatus(str, Enum):
    draft = "draft"
    active = "active"
    paused = "paused"


class DynamicStatus(str, Enum):
    upcoming = "upcoming"
    active = "active"
    expired = "expired"


class LinkedEntity(BaseModel):
    type: str
    id: str


class CampaignSettings(BaseModel):
    allowMultipleSubmissions: bool = True


class CampaignIn(BaseModel):
    id: str = Field(..., min_length=1)
    title: LocalizedText
    description: LocalizedText = Field(default_factory=dict)
    role: CampaignRole
    linkedEntity: LinkedEntity
    fields: List[FieldDefinition] = Field(default_factory=list)
    startDate: datetime
    endDate: datetime
    responseLimit: Optional[int] = Field(None, ge=0)
    status: CampaignStatus = CampaignStatus.draft
    settings: CampaignSettings = Field(default_factory=CampaignSettings)

    @field_validator("startDate", "endDate")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return as_naive_utc(value)

    @model_validator(mode="after")
    def _check_definition(self):
        seen = set()
        for field in self.fields:
            if field.id in seen:
                raise ValueError(f"Duplicate field id '{field.id}'")
            seen.add(field.id)
        if self.endDate < self.startDate:
            raise ValueError("endDate must not be before startDate")
        return self

    def field(self, field_id: str) -> Optional[FieldDefinition]:
        for f in self.fields:
            if f.id == field_id:
                return f
        return None


class Campaign(CampaignIn):
    # admission counter maintained by the engine, see Repository.reserve_slot
    responseCount: int = 0
    createdAt: Optional[datetime] = None


class CampaignView(Campaign):
    dynamicStatus: DynamicStatus
    daysLeft: int = Field(..., ge=0)
    spotsLeft: Optional[int] = None
    acceptingResponses: bool


# ============================================================
# RESPONSE SCHEMAS
# ============================================================

class ResponseStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


AnswerValue = Union[str, List[str]]


class Answer(BaseModel):
    fieldId: str
    value: AnswerValue


class Attachment(BaseModel):
    fieldId: str
    originalName: str
    storageName: str
    sizeBytes: int
    contentType: Optional[str] = None
    url: str


class UploadedFile(BaseModel):
    """A file received for a file-upload field, before it is stored."""
    filename: str
    contentType: Optional[str] = None
    sizeBytes: int
    content: bytes = b""


class Applicant(BaseModel):
    userId: Optional[str] = None
    userEmail: Optional[str] = None
    userName: Optional[str] = None
    ipAddress: Optional[str] = None
    userAgent: Optional[str] = None


class Response(BaseModel):
    id: str
    campaignId: str
    referenceNumber: str
    submittedAt: datetime
    userId: Optional[str] = None
    userEmail: Optional[str] = None
    userName: Optional[str] = None
    answers: List[Answer] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)
    status: ResponseStatus = ResponseStatus.pending
    reviewedAt: Optional[datetime] = None
    reviewedBy: Optional[str] = None
    rating: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    notes: str = ""
    ipAddress: Optional[str] = None
    userAgent: Optional[str] = None

    def answer_for(self, field_id: str) -> Optional[Answer]:
        for answer in self.answers:
            if answer.fieldId == field_id:
                return answer
        return None


# ============================================================
# REVIEW SCHEMAS
# ============================================================

class StatusUpdateIn(BaseModel):
    status: ResponseStatus
    notes: Optional[str] = None


class RatingIn(BaseModel):
    rating: int


class TagIn(BaseModel):
    tag: str


class BulkStatusIn(BaseModel):
    responseIds: List[str]
    status: ResponseStatus


class BulkResult(BaseModel):
    updated: List[str] = Field(default_factory=list)
    notFound: List[str] = Field(default_factory=list)


# ============================================================
# REPORTING SCHEMAS
# ============================================================

class DateRange(str, Enum):
    all = "all"
    today = "today"
    last_week = "lastWeek"
    last_month = "lastMonth"

    @classmethod
    def _missing_(cls, value):
        aliases = {"week": cls.last_week, "month": cls.last_month}
        return aliases.get(value)


class HistogramBucket(BaseModel):
    label: str
    count: int = 0
    lower: Optional[float] = None
    upper: Optional[float] = None


class FieldHistogram(BaseModel):
    fieldId: str
    fieldType: FieldType
    label: str
    answered: int = 0
    buckets: List[HistogramBucket] = Field(default_factory=list)
    outOfRange: int = 0


class SelectableField(BaseModel):
    id: str
    label: str
    type: FieldType

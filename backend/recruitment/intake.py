"""
Submission intake: turns raw answers into a stored, pending Response.

Capacity is enforced with Repository.reserve_slot, an atomic conditional
increment of the campaign's admission counter. The up-front spotsLeft check
only short-circuits obviously full campaigns; the reservation is what keeps
concurrent submissions from over-subscribing a limited campaign.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from recruitment import fields as field_schema
from recruitment.database import Repository
from recruitment.errors import (
    CampaignFull,
    CampaignNotOpen,
    DuplicateSubmission,
    FieldValidationError,
    SubmissionInvalid,
)
from recruitment.lifecycle import utcnow
from recruitment.schemas import (
    Answer,
    Applicant,
    Attachment,
    Campaign,
    CampaignView,
    DynamicStatus,
    FieldDefinition,
    FieldType,
    Response,
    ResponseStatus,
    UploadedFile,
)
from recruitment.storage import AttachmentStore

logger = logging.getLogger(__name__)

RawAnswers = Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]


def generate_reference_number(now: datetime) -> str:
    return f"REC-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def _answers_by_field(raw_answers: Optional[RawAnswers]) -> Dict[str, Any]:
    # accepts {"fieldId": value} or [{"fieldId": ..., "value": ...}]; last answer wins
    if not raw_answers:
        return {}
    if isinstance(raw_answers, Mapping):
        return dict(raw_answers)
    by_field: Dict[str, Any] = {}
    for item in raw_answers:
        by_field[str(item.get("fieldId"))] = item.get("value")
    return by_field


def validate_answers(
    campaign: Campaign,
    raw_answers: Optional[RawAnswers],
    files: Optional[Mapping[str, UploadedFile]] = None,
) -> List[Tuple[FieldDefinition, Any]]:
    """
    Validate every answerable field in campaign order.

    All failures are collected and raised together as SubmissionInvalid so the
    applicant can fix everything in one round-trip. Returns (field, value)
    pairs for the fields that received a value.
    """
    answers = _answers_by_field(raw_answers)
    files = files or {}
    errors: List[FieldValidationError] = []
    accepted: List[Tuple[FieldDefinition, Any]] = []

    answerable = field_schema.input_fields(campaign.fields)
    known_ids = {f.id for f in answerable}

    for field in answerable:
        if field.type == FieldType.file_upload:
            value = files.get(field.id)
            misplaced = not field_schema.is_missing(answers.get(field.id))
        else:
            value = answers.get(field.id)
            misplaced = field.id in files
        if misplaced:
            errors.append(FieldValidationError(
                FieldValidationError.INVALID_FORMAT,
                "Expected an uploaded file" if field.type == FieldType.file_upload else "Files are not accepted here",
                field_id=field.id,
            ))
            continue
        try:
            normalized = field_schema.validate(field, value)
        except FieldValidationError as e:
            errors.append(e)
            continue
        if normalized is not None:
            accepted.append((field, normalized))

    for field_id in list(answers) + list(files):
        if field_id not in known_ids:
            errors.append(FieldValidationError(
                FieldValidationError.UNKNOWN_FIELD,
                f"Unknown field '{field_id}'",
                field_id=field_id,
            ))

    if errors:
        raise SubmissionInvalid(errors)
    return accepted


def dedupe_key(campaign: Campaign, applicant: Applicant) -> Optional[str]:
    if campaign.settings.allowMultipleSubmissions or not applicant.userId:
        return None
    return f"{campaign.id}:{applicant.userId}"


async def submit(
    campaign: Campaign,
    view: CampaignView,
    raw_answers: Optional[RawAnswers],
    files: Optional[Mapping[str, UploadedFile]],
    applicant: Applicant,
    *,
    repository: Repository,
    store: AttachmentStore,
    now: Optional[datetime] = None,
) -> Response:
    now = now or utcnow()

    if view.dynamicStatus != DynamicStatus.active:
        logger.info(f"Rejected submission to campaign {campaign.id}: status is {view.dynamicStatus.value}")
        raise CampaignNotOpen("This campaign is not currently accepting responses")
    if view.spotsLeft == 0:
        logger.info(f"Rejected submission to campaign {campaign.id}: no spots left")
        raise CampaignFull("This campaign has reached its response limit")

    accepted = validate_answers(campaign, raw_answers, files)

    key = dedupe_key(campaign, applicant)
    if key and await repository.find_response_by_user(campaign.id, applicant.userId):
        raise DuplicateSubmission("You have already submitted a response to this campaign")

    if not await repository.reserve_slot(campaign.id):
        logger.info(f"Rejected submission to campaign {campaign.id}: slot reservation failed")
        raise CampaignFull("This campaign has reached its response limit")

    stored: List[Attachment] = []
    try:
        answers: List[Answer] = []
        for field, value in accepted:
            if isinstance(value, UploadedFile):
                stored.append(store.store(field.id, value))
            answers.append(Answer(fieldId=field.id, value=field_schema.answer_value(value)))

        response = Response(
            id=uuid.uuid4().hex,
            campaignId=campaign.id,
            referenceNumber=generate_reference_number(now),
            submittedAt=now,
            userId=applicant.userId,
            userEmail=applicant.userEmail,
            userName=applicant.userName,
            answers=answers,
            attachments=stored,
            status=ResponseStatus.pending,
            ipAddress=applicant.ipAddress,
            userAgent=applicant.userAgent,
        )
        await repository.insert_response(response, dedupe_key=key)
    except BaseException:
        # undo the reservation and any stored files; the caller sees the original error
        try:
            await repository.release_slot(campaign.id)
        except Exception as e:
            logger.error(f"Could not release slot for campaign {campaign.id}: {e}")
        for attachment in stored:
            try:
                store.delete(attachment)
            except OSError as e:
                logger.warning(f"Could not delete attachment {attachment.storageName}: {e}")
        raise

    logger.info(f"Accepted response {response.referenceNumber} for campaign {campaign.id}")
    return response

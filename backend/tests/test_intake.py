import asyncio
import re
from datetime import datetime

import pytest

from conftest import make_campaign
from recruitment import intake
from recruitment.errors import (
    CampaignFull,
    CampaignNotOpen,
    DuplicateSubmission,
    FieldValidationError,
    SubmissionInvalid,
)
from recruitment.lifecycle import resolve
from recruitment.schemas import Applicant, ResponseStatus, UploadedFile

NOW = datetime(2024, 1, 5, 12, 0)

VALID_ANSWERS = [
    {"fieldId": "name", "value": "Jane Doe"},
    {"fieldId": "email", "value": "jane@example.com"},
    {"fieldId": "skills", "value": ["JS", "Go"]},
]


def _submit(repository, store, campaign, answers=VALID_ANSWERS, applicant=None, files=None, now=NOW):
    async def run():
        count = await repository.count_responses(campaign.id)
        view = resolve(campaign, now, count)
        return await intake.submit(
            campaign, view, answers, files, applicant or Applicant(),
            repository=repository, store=store, now=now,
        )
    return asyncio.run(run())


def _saved(repository, campaign):
    return asyncio.run(repository.save_campaign(campaign))


def test_accepted_submission_is_pending_with_reference_number(repository, store):
    campaign = _saved(repository, make_campaign())
    applicant = Applicant(userId="u1", userName="Jane Doe", userEmail="jane@example.com", userAgent="Mozilla/5.0 (iPhone)")
    response = _submit(repository, store, campaign, applicant=applicant)

    assert response.status == ResponseStatus.pending
    assert response.submittedAt == NOW
    assert re.fullmatch(r"REC-20240105-[0-9A-F]{8}", response.referenceNumber)
    assert response.answer_for("skills").value == ["JS", "Go"]
    assert response.userAgent == "Mozilla/5.0 (iPhone)"
    assert repository.responses[response.id] == response
    assert repository.campaigns[campaign.id].responseCount == 1


def test_submission_outside_window_is_rejected(repository, store):
    campaign = _saved(repository, make_campaign())
    with pytest.raises(CampaignNotOpen):
        _submit(repository, store, campaign, now=datetime(2024, 1, 11))
    with pytest.raises(CampaignNotOpen):
        _submit(repository, store, campaign, now=datetime(2023, 12, 1))
    assert repository.responses == {}


def test_paused_campaign_rejects_submissions(repository, store):
    campaign = _saved(repository, make_campaign(status="paused"))
    with pytest.raises(CampaignNotOpen):
        _submit(repository, store, campaign)


def test_full_campaign_rejects_without_storing(repository, store):
    campaign = _saved(repository, make_campaign(responseLimit=1))
    _submit(repository, store, campaign)
    with pytest.raises(CampaignFull):
        _submit(repository, store, campaign)
    assert len(repository.responses) == 1


def test_zero_limit_campaign_is_always_full(repository, store):
    campaign = _saved(repository, make_campaign(responseLimit=0))
    with pytest.raises(CampaignFull):
        _submit(repository, store, campaign)


def test_all_validation_errors_are_reported_together(repository, store):
    campaign = _saved(repository, make_campaign())
    answers = [
        {"fieldId": "email", "value": "nope"},
        {"fieldId": "shift", "value": "Night"},
        {"fieldId": "favourite_colour", "value": "blue"},
    ]
    with pytest.raises(SubmissionInvalid) as exc:
        _submit(repository, store, campaign, answers=answers)

    codes = {e.field_id: e.code for e in exc.value.errors}
    assert codes == {
        "name": FieldValidationError.MISSING_VALUE,
        "email": FieldValidationError.INVALID_FORMAT,
        "shift": FieldValidationError.INVALID_OPTION,
        "favourite_colour": FieldValidationError.UNKNOWN_FIELD,
    }
    assert repository.responses == {}
    assert repository.campaigns[campaign.id].responseCount == 0


def test_answers_may_be_given_as_a_mapping_and_last_answer_wins(repository, store):
    campaign = _saved(repository, make_campaign())
    response = _submit(repository, store, campaign, answers={"name": "Jane", "email": "jane@example.com"})
    assert response.answer_for("name").value == "Jane"

    answers = VALID_ANSWERS + [{"fieldId": "name", "value": "Janet"}]
    response = _submit(repository, store, campaign, answers=answers)
    assert response.answer_for("name").value == "Janet"


def test_duplicate_user_is_rejected_when_multiple_submissions_are_off(repository, store):
    campaign = _saved(repository, make_campaign(settings={"allowMultipleSubmissions": False}))
    _submit(repository, store, campaign, applicant=Applicant(userId="u1"))
    with pytest.raises(DuplicateSubmission):
        _submit(repository, store, campaign, applicant=Applicant(userId="u1"))
    _submit(repository, store, campaign, applicant=Applicant(userId="u2"))
    assert len(repository.responses) == 2


def test_same_user_may_submit_twice_by_default(repository, store):
    campaign = _saved(repository, make_campaign())
    _submit(repository, store, campaign, applicant=Applicant(userId="u1"))
    _submit(repository, store, campaign, applicant=Applicant(userId="u1"))
    assert len(repository.responses) == 2


def test_concurrent_submissions_never_exceed_the_limit(repository, store):
    """Ten applicants race for the last open spot; exactly one gets it."""
    campaign = _saved(repository, make_campaign(responseLimit=3))
    for i in range(2):
        _submit(repository, store, campaign, applicant=Applicant(userId=f"early-{i}"))

    async def race():
        # every racer sees the same snapshot with one spot left
        view = resolve(campaign, NOW, await repository.count_responses(campaign.id))
        assert view.spotsLeft == 1
        return await asyncio.gather(
            *[
                intake.submit(
                    campaign, view, VALID_ANSWERS, None, Applicant(userId=f"racer-{i}"),
                    repository=repository, store=store, now=NOW,
                )
                for i in range(10)
            ],
            return_exceptions=True,
        )

    results = asyncio.run(race())
    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]

    assert len(accepted) == 1
    assert len(rejected) == 9
    assert all(isinstance(r, CampaignFull) for r in rejected)
    assert len(repository.responses) == 3
    assert repository.campaigns[campaign.id].responseCount == 3


def test_failed_insert_releases_the_slot_and_stored_files(repository, store):
    campaign = _saved(repository, make_campaign(
        responseLimit=1,
        fields=[{"id": "cv", "type": "file-upload", "required": True}],
    ))

    async def broken_insert(response, dedupe_key=None):
        raise OSError("database unavailable")

    repository.insert_response = broken_insert
    upload = UploadedFile(filename="cv.pdf", contentType="application/pdf", sizeBytes=3, content=b"pdf")
    with pytest.raises(OSError):
        _submit(repository, store, campaign, answers=[], files={"cv": upload})

    assert repository.campaigns[campaign.id].responseCount == 0
    assert not any(store.upload_dir.iterdir())


def test_uploaded_file_is_stored_and_recorded(repository, store):
    campaign = _saved(repository, make_campaign(
        fields=[{"id": "cv", "type": "file-upload", "acceptedTypes": [".pdf"]}],
    ))
    upload = UploadedFile(filename="cv.pdf", contentType="application/pdf", sizeBytes=3, content=b"pdf")
    response = _submit(repository, store, campaign, answers=[], files={"cv": upload})

    attachment = response.attachments[0]
    assert response.answer_for("cv").value == "cv.pdf"
    assert attachment.originalName == "cv.pdf"
    assert attachment.url == f"/uploads/{attachment.storageName}"
    assert (store.upload_dir / attachment.storageName).read_bytes() == b"pdf"


def test_answers_sent_through_the_wrong_channel_are_reported(repository, store):
    campaign = _saved(repository, make_campaign(fields=[
        {"id": "name", "type": "short-text"},
        {"id": "cv", "type": "file-upload"},
    ]))
    upload = UploadedFile(filename="cv.pdf", contentType="application/pdf", sizeBytes=3, content=b"pdf")

    with pytest.raises(SubmissionInvalid) as exc:
        _submit(
            repository, store, campaign,
            answers=[{"fieldId": "cv", "value": "cv.pdf"}],
            files={"name": upload},
        )

    codes = {e.field_id: e.code for e in exc.value.errors}
    assert codes == {"name": FieldValidationError.INVALID_FORMAT, "cv": FieldValidationError.INVALID_FORMAT}
    assert repository.responses == {}


def test_failed_slot_release_does_not_hide_the_insert_error(repository, store):
    campaign = _saved(repository, make_campaign(responseLimit=1))

    async def broken_insert(response, dedupe_key=None):
        raise OSError("database unavailable")

    async def broken_release(campaign_id):
        raise RuntimeError("connection reset")

    repository.insert_response = broken_insert
    repository.release_slot = broken_release
    with pytest.raises(OSError, match="database unavailable"):
        _submit(repository, store, campaign)

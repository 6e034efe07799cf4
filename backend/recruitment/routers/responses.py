import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi import Response as HttpResponse
from starlette.datastructures import UploadFile

from recruitment import intake, review
from recruitment.analytics import aggregate_status
from recruitment.config import settings
from recruitment.database import Repository, get_repository
from recruitment.errors import (
    CampaignFull,
    CampaignNotOpen,
    DuplicateSubmission,
    InvalidRating,
    InvalidTag,
    NotFound,
    RecruitmentError,
    SubmissionInvalid,
)
from recruitment.export import (
    build_metadata,
    export_csv,
    export_filename,
    export_json,
    filter_by_range,
    search_responses,
)
from recruitment.routers.campaigns import campaign_view, load_campaign_or_404, parse_range
from recruitment.schemas import (
    Applicant,
    BulkStatusIn,
    RatingIn,
    ResponseStatus,
    StatusUpdateIn,
    TagIn,
    UploadedFile,
    localized,
)
from recruitment.storage import AttachmentStore, get_attachment_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["responses"])

FILE_FIELD_PREFIX = "file_"
CHUNK_SIZE = 1024 * 1024  # 1MB chunks


def _http_error(e: RecruitmentError) -> HTTPException:
    if isinstance(e, SubmissionInvalid):
        return HTTPException(
            status_code=422,
            detail={"message": e.message, "errors": [err.to_dict() for err in e.errors]},
        )
    if isinstance(e, (CampaignNotOpen, CampaignFull, DuplicateSubmission)):
        return HTTPException(status_code=409, detail=e.message)
    if isinstance(e, (InvalidRating, InvalidTag)):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=e.message)
    return HTTPException(status_code=400, detail=e.message)


async def _read_upload(upload: UploadFile) -> UploadedFile:
    # Stream the file in chunks so oversized uploads are refused early
    max_size = settings.MAX_UPLOAD_SIZE
    total_size = 0
    chunks = []
    while True:
        chunk = await upload.read(CHUNK_SIZE)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_size:
            raise HTTPException(
                status_code=413,
                detail=f"File size exceeds maximum allowed size of {max_size / (1024 * 1024):.2f}MB",
            )
        chunks.append(chunk)
    return UploadedFile(
        filename=upload.filename or "unknown",
        contentType=upload.content_type,
        sizeBytes=total_size,
        content=b"".join(chunks),
    )


async def _read_submission(request: Request) -> Dict[str, Any]:
    """
    Accepts multipart form data (answers as a JSON string, files as
    file_<fieldId> parts) or a plain JSON body without files.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Expected a JSON object")
        body.setdefault("answers", [])
        body["files"] = {}
        return body

    form = await request.form()
    try:
        raw = form.get("answers")
        answers = json.loads(raw if isinstance(raw, str) and raw else "[]")
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="answers must be a JSON array")
    files = {}
    for key, value in form.multi_items():
        if key.startswith(FILE_FIELD_PREFIX) and isinstance(value, UploadFile):
            files[key[len(FILE_FIELD_PREFIX):]] = await _read_upload(value)
    return {
        "answers": answers,
        "files": files,
        "userId": form.get("userId"),
        "userEmail": form.get("userEmail"),
        "userName": form.get("userName"),
    }


@router.post("/campaigns/{campaign_id}/responses", status_code=201)
async def submit_response(
    campaign_id: str,
    request: Request,
    repository: Repository = Depends(get_repository),
    store: AttachmentStore = Depends(get_attachment_store),
):
    campaign = await load_campaign_or_404(repository, campaign_id)
    body = await _read_submission(request)

    answers = body.get("answers")
    if not isinstance(answers, (list, dict)) or (
        isinstance(answers, list) and not all(isinstance(a, dict) for a in answers)
    ):
        raise HTTPException(status_code=400, detail="answers must be a list of {fieldId, value} objects")

    applicant = Applicant(
        userId=body.get("userId"),
        userEmail=body.get("userEmail"),
        userName=body.get("userName"),
        ipAddress=request.headers.get("x-forwarded-for") or (request.client.host if request.client else None),
        userAgent=request.headers.get("user-agent"),
    )

    view = await campaign_view(repository, campaign)
    try:
        response = await intake.submit(
            campaign, view, answers, body["files"], applicant,
            repository=repository, store=store,
        )
    except RecruitmentError as e:
        raise _http_error(e)

    return {
        "success": True,
        "responseId": response.id,
        "referenceNumber": response.referenceNumber,
        "message": "Application submitted successfully",
    }


@router.get("/campaigns/{campaign_id}/responses")
async def list_responses(
    campaign_id: str,
    status: Optional[ResponseStatus] = Query(None),
    date_range: str = Query("all", alias="range", description="all, today, lastWeek or lastMonth"),
    search: Optional[str] = Query(None, description="Matches name, email or any answer"),
    repository: Repository = Depends(get_repository),
):
    """Return responses for a campaign (most recent first), with status counts over the whole set."""
    await load_campaign_or_404(repository, campaign_id)
    everything = await repository.load_responses(campaign_id)
    selected = [r for r in everything if status is None or r.status == status]
    selected = search_responses(filter_by_range(selected, parse_range(date_range)), search)
    return {
        "total": len(selected),
        "stats": {"total": len(everything), **aggregate_status(everything)},
        "responses": selected,
    }


@router.get("/campaigns/{campaign_id}/responses/export")
async def export_responses(
    campaign_id: str,
    export_format: str = Query("csv", alias="format", pattern="^(csv|json)$"),
    date_range: str = Query("all", alias="range", description="all, today, lastWeek or lastMonth"),
    repository: Repository = Depends(get_repository),
):
    campaign = await load_campaign_or_404(repository, campaign_id)
    selected_range = parse_range(date_range)
    responses = filter_by_range(await repository.load_responses(campaign_id), selected_range)
    filename = export_filename(localized(campaign.title), export_format)

    if export_format == "csv":
        content = export_csv(responses, campaign.fields)
        media_type = "text/csv"
    else:
        content = export_json(responses, campaign.fields, build_metadata(campaign, selected_range))
        media_type = "application/json"

    logger.info(f"Exported {len(responses)} responses of campaign {campaign_id} as {export_format}")
    return HttpResponse(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/responses/{response_id}")
async def get_response(response_id: str, repository: Repository = Depends(get_repository)):
    response = await repository.load_response(response_id)
    if not response:
        raise HTTPException(status_code=404, detail="Response not found")
    return response


@router.patch("/responses/{response_id}/status")
async def update_response_status(
    response_id: str,
    update: StatusUpdateIn,
    reviewer_id: str = Header(..., alias="X-Reviewer-Id"),
    repository: Repository = Depends(get_repository),
):
    try:
        return await review.update_status(repository, response_id, update.status, reviewer_id, notes=update.notes)
    except RecruitmentError as e:
        raise _http_error(e)


@router.put("/responses/{response_id}/rating")
async def update_response_rating(
    response_id: str,
    body: RatingIn,
    repository: Repository = Depends(get_repository),
):
    try:
        return await review.update_rating(repository, response_id, body.rating)
    except RecruitmentError as e:
        raise _http_error(e)


@router.post("/responses/{response_id}/tags")
async def add_response_tag(
    response_id: str,
    body: TagIn,
    repository: Repository = Depends(get_repository),
):
    try:
        return await review.tag_response(repository, response_id, body.tag)
    except RecruitmentError as e:
        raise _http_error(e)


@router.delete("/responses/{response_id}/tags/{tag}")
async def remove_response_tag(
    response_id: str,
    tag: str,
    repository: Repository = Depends(get_repository),
):
    try:
        return await review.untag_response(repository, response_id, tag)
    except RecruitmentError as e:
        raise _http_error(e)


@router.post("/responses/bulk-status")
async def bulk_update_status(
    body: BulkStatusIn,
    reviewer_id: str = Header(..., alias="X-Reviewer-Id"),
    repository: Repository = Depends(get_repository),
):
    """Update many responses at once; unknown ids are reported, not fatal."""
    return await review.bulk_set_status(repository, body.responseIds, body.status, reviewer_id)

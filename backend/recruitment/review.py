from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from recruitment.database import Repository
from recruitment.errors import InvalidRating, InvalidTag, NotFound
from recruitment.lifecycle import utcnow
from recruitment.schemas import BulkResult, Response, ResponseStatus

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


# ------------------------------------------------------------
# pure transitions; each returns a new Response
# ------------------------------------------------------------

def set_status(
    response: Response,
    status: ResponseStatus,
    reviewer_id: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Response:
    # every transition is allowed, including re-opening to pending
    update = {
        "status": ResponseStatus(status),
        "reviewedAt": now or utcnow(),
        "reviewedBy": reviewer_id,
    }
    if notes is not None:
        update["notes"] = notes
    return response.model_copy(update=update)


def set_rating(response: Response, rating: int) -> Response:
    if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidRating(f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}")
    return response.model_copy(update={"rating": rating})


def _clean_tag(tag: str) -> str:
    cleaned = (tag or "").strip()
    if not cleaned:
        raise InvalidTag("Tag must not be empty")
    return cleaned


def add_tag(response: Response, tag: str) -> Response:
    tag = _clean_tag(tag)
    if tag in response.tags:
        return response
    return response.model_copy(update={"tags": [*response.tags, tag]})


def remove_tag(response: Response, tag: str) -> Response:
    tag = _clean_tag(tag)
    if tag not in response.tags:
        return response
    return response.model_copy(update={"tags": [t for t in response.tags if t != tag]})


# ------------------------------------------------------------
# repository-backed operations
# ------------------------------------------------------------

async def _load(repository: Repository, response_id: str) -> Response:
    response = await repository.load_response(response_id)
    if response is None:
        raise NotFound(f"Response {response_id} not found")
    return response


async def _save(repository: Repository, response: Response) -> Response:
    if not await repository.update_response(response):
        raise NotFound(f"Response {response.id} not found")
    return response


async def update_status(
    repository: Repository,
    response_id: str,
    status: ResponseStatus,
    reviewer_id: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Response:
    response = await _load(repository, response_id)
    updated = set_status(response, status, reviewer_id, notes=notes, now=now)
    await _save(repository, updated)
    logger.info(f"Response {response_id}: {response.status.value} -> {updated.status.value} by {reviewer_id}")
    return updated


async def update_rating(repository: Repository, response_id: str, rating: int) -> Response:
    response = await _load(repository, response_id)
    return await _save(repository, set_rating(response, rating))


async def tag_response(repository: Repository, response_id: str, tag: str) -> Response:
    response = await _load(repository, response_id)
    updated = add_tag(response, tag)
    if updated is response:
        return response
    return await _save(repository, updated)


async def untag_response(repository: Repository, response_id: str, tag: str) -> Response:
    response = await _load(repository, response_id)
    updated = remove_tag(response, tag)
    if updated is response:
        return response
    return await _save(repository, updated)


async def bulk_set_status(
    repository: Repository,
    response_ids: Iterable[str],
    status: ResponseStatus,
    reviewer_id: str,
    now: Optional[datetime] = None,
) -> BulkResult:
    """
    Apply set_status to every id that exists.

    Missing ids are reported in notFound instead of failing the batch. Each
    response is written with one document update, so an id is either fully
    transitioned or reported missing.
    """
    now = now or utcnow()
    result = BulkResult()
    for response_id in dict.fromkeys(response_ids):
        response = await repository.load_response(response_id)
        if response is None:
            result.notFound.append(response_id)
            continue
        if await repository.update_response(set_status(response, status, reviewer_id, now=now)):
            result.updated.append(response_id)
        else:
            # deleted between load and write
            result.notFound.append(response_id)
    logger.info(
        f"Bulk status {ResponseStatus(status).value} by {reviewer_id}: "
        f"{len(result.updated)} updated, {len(result.notFound)} not found"
    )
    return result

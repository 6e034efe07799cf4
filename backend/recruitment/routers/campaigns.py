from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from recruitment import analytics
from recruitment.database import Repository, get_repository
from recruitment.errors import UnsupportedAggregation
from recruitment.export import filter_by_range
from recruitment.lifecycle import is_listed, resolve, utcnow
from recruitment.schemas import Campaign, CampaignIn, CampaignView, DateRange

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])


async def load_campaign_or_404(repository: Repository, campaign_id: str) -> Campaign:
    campaign = await repository.load_campaign(campaign_id)
    if not campaign:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return campaign


async def campaign_view(repository: Repository, campaign: Campaign) -> CampaignView:
    count = await repository.count_responses(campaign.id)
    return resolve(campaign, utcnow(), count)


def parse_range(value: str) -> DateRange:
    try:
        return DateRange(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid range. Use all, today, lastWeek or lastMonth")


@router.get("")
async def list_campaigns(
    entityType: Optional[str] = Query(None, description="Linked entity type, e.g. project"),
    entityId: Optional[str] = Query(None, description="Linked entity id"),
    repository: Repository = Depends(get_repository),
):
    """List campaigns with their derived status, newest first."""
    items = []
    for campaign in await repository.list_campaigns(entityType, entityId):
        items.append(await campaign_view(repository, campaign))
    return items


@router.get("/active")
async def list_active_campaigns(
    entityType: str = Query(..., description="Linked entity type, e.g. project"),
    entityId: str = Query(..., description="Linked entity id"),
    repository: Repository = Depends(get_repository),
):
    """Campaigns currently open for a linked entity."""
    items = []
    for campaign in await repository.list_campaigns(entityType, entityId):
        view = await campaign_view(repository, campaign)
        if is_listed(view):
            items.append(view)
    return {"success": True, "campaigns": items, "count": len(items)}


@router.post("")
async def upsert_campaign(campaign: CampaignIn, repository: Repository = Depends(get_repository)):
    existing = await repository.load_campaign(campaign.id)
    # Preserve existing createdAt
    created_at = existing.createdAt if existing and existing.createdAt else utcnow()
    await repository.save_campaign(Campaign(**campaign.model_dump(), createdAt=created_at))
    return {"status": "ok", "campaignId": campaign.id}


@router.get("/{campaign_id}")
async def get_campaign(campaign_id: str, repository: Repository = Depends(get_repository)):
    campaign = await load_campaign_or_404(repository, campaign_id)
    return await campaign_view(repository, campaign)


@router.get("/{campaign_id}/analytics")
async def campaign_analytics(
    campaign_id: str,
    date_range: str = Query("all", alias="range", description="all, today, lastWeek or lastMonth"),
    repository: Repository = Depends(get_repository),
):
    """Status counts, daily submissions and per-field histograms."""
    campaign = await load_campaign_or_404(repository, campaign_id)
    responses = filter_by_range(await repository.load_responses(campaign_id), parse_range(date_range))
    return analytics.summarize(campaign, responses)


@router.get("/{campaign_id}/analytics/{field_id}")
async def field_analytics(
    campaign_id: str,
    field_id: str,
    date_range: str = Query("all", alias="range", description="all, today, lastWeek or lastMonth"),
    repository: Repository = Depends(get_repository),
):
    campaign = await load_campaign_or_404(repository, campaign_id)
    field = campaign.field(field_id)
    if not field:
        raise HTTPException(status_code=404, detail="Field not found")
    responses = filter_by_range(await repository.load_responses(campaign_id), parse_range(date_range))
    try:
        return analytics.aggregate_field(responses, field)
    except UnsupportedAggregation as e:
        raise HTTPException(status_code=400, detail=e.message)

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from recruitment.schemas import Campaign, CampaignStatus, CampaignView, DynamicStatus, as_naive_utc

ONE_DAY = timedelta(days=1)

# base statuses that keep a campaign out of intake regardless of its dates
HELD_STATUSES = {CampaignStatus.draft, CampaignStatus.paused}


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in Mongo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def window_status(start: datetime, end: datetime, now: datetime) -> DynamicStatus:
    if now < start:
        return DynamicStatus.upcoming
    if now > end:
        return DynamicStatus.expired
    return DynamicStatus.active


def days_left(end: datetime, now: datetime) -> int:
    return max(0, math.ceil((end - now) / ONE_DAY))


def spots_left(response_limit: Optional[int], response_count: int) -> Optional[int]:
    if response_limit is None:
        return None
    return max(0, response_limit - response_count)


def resolve(campaign: Campaign, now: datetime, response_count: int) -> CampaignView:
    """
    Annotate a campaign with its runtime status.

    Pure function of (campaign, now, response_count); nothing here is stored.
    """
    now = as_naive_utc(now)
    start = as_naive_utc(campaign.startDate)
    end = as_naive_utc(campaign.endDate)

    status = window_status(start, end, now)
    if status == DynamicStatus.active and campaign.status in HELD_STATUSES:
        # draft and paused campaigns never report active, whatever their dates
        status = DynamicStatus.upcoming

    count = max(0, response_count)
    spots = spots_left(campaign.responseLimit, count)

    data = campaign.model_dump()
    data["responseCount"] = count
    return CampaignView(
        **data,
        dynamicStatus=status,
        daysLeft=days_left(end, now),
        spotsLeft=spots,
        acceptingResponses=status == DynamicStatus.active and spots != 0,
    )


def is_listed(view: CampaignView) -> bool:
    """Campaigns shown on public listings for a linked entity."""
    return view.dynamicStatus == DynamicStatus.active

import logging
from typing import Any, Dict, List, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from recruitment.config import settings
from recruitment.errors import DuplicateSubmission
from recruitment.schemas import Campaign, Response, ResponseStatus

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(settings.MONGO_URI)
db = client[settings.DB_NAME]

campaigns_collection = db.campaigns
responses_collection = db.responses


class Repository(Protocol):
    """Persistence operations the engine depends on."""

    async def load_campaign(self, campaign_id: str) -> Optional[Campaign]: ...

    async def list_campaigns(self, entity_type: Optional[str] = None, entity_id: Optional[str] = None) -> List[Campaign]: ...

    async def save_campaign(self, campaign: Campaign) -> Campaign: ...

    async def count_responses(self, campaign_id: str) -> int: ...

    async def reserve_slot(self, campaign_id: str) -> bool: ...

    async def release_slot(self, campaign_id: str) -> None: ...

    async def insert_response(self, response: Response, dedupe_key: Optional[str] = None) -> None: ...

    async def find_response_by_user(self, campaign_id: str, user_id: str) -> Optional[Response]: ...

    async def load_responses(self, campaign_id: str, status: Optional[ResponseStatus] = None) -> List[Response]: ...

    async def load_response(self, response_id: str) -> Optional[Response]: ...

    async def update_response(self, response: Response) -> bool: ...


def _to_doc(model) -> Dict[str, Any]:
    doc = model.model_dump()
    doc["_id"] = doc.pop("id")
    return doc


def _from_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    doc["id"] = doc.pop("_id")
    doc.pop("dedupeKey", None)
    return doc


def slot_filter(campaign_id: str) -> Dict[str, Any]:
    """Matches the campaign only while it still has room for one more response."""
    return {
        "_id": campaign_id,
        "$or": [
            {"responseLimit": None},
            {"$expr": {"$lt": [{"$ifNull": ["$responseCount", 0]}, "$responseLimit"]}},
        ],
    }


def is_dedupe_collision(error: DuplicateKeyError) -> bool:
    """True when the unique dedupeKey index rejected the insert, not some other unique index."""
    key_pattern = (error.details or {}).get("keyPattern") or {}
    if key_pattern:
        return "dedupeKey" in key_pattern
    # older servers only name the index in the message
    return "dedupeKey" in str(error)


REVIEW_FIELDS = ("status", "reviewedAt", "reviewedBy", "rating", "tags", "notes")


class MongoRepository:
    def __init__(self, campaigns=campaigns_collection, responses=responses_collection):
        self.campaigns = campaigns
        self.responses = responses

    async def init_indexes(self):
        """Create indexes; call once during app startup."""
        await self.responses.create_index([("campaignId", ASCENDING), ("submittedAt", DESCENDING)])
        await self.responses.create_index("referenceNumber", unique=True)
        # one response per user when a campaign disallows multiple submissions
        await self.responses.create_index(
            "dedupeKey",
            unique=True,
            partialFilterExpression={"dedupeKey": {"$exists": True}},
        )
        await self.campaigns.create_index([("linkedEntity.type", ASCENDING), ("linkedEntity.id", ASCENDING)])
        logger.info("Mongo indexes initialized")

    async def load_campaign(self, campaign_id: str) -> Optional[Campaign]:
        doc = await self.campaigns.find_one({"_id": campaign_id})
        if not doc:
            return None
        return Campaign(**_from_doc(doc))

    async def list_campaigns(self, entity_type: Optional[str] = None, entity_id: Optional[str] = None) -> List[Campaign]:
        query: Dict[str, Any] = {}
        if entity_type:
            query["linkedEntity.type"] = entity_type
        if entity_id:
            query["linkedEntity.id"] = entity_id
        items = []
        async for doc in self.campaigns.find(query, sort=[("createdAt", -1)]):
            items.append(Campaign(**_from_doc(doc)))
        return items

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        doc = _to_doc(campaign)
        doc.pop("_id")
        # the admission counter only moves through reserve_slot/release_slot
        doc.pop("responseCount", None)
        existing = await self.campaigns.find_one({"_id": campaign.id})
        if existing:
            doc["createdAt"] = existing.get("createdAt", campaign.createdAt)
        await self.campaigns.update_one(
            {"_id": campaign.id},
            {"$set": doc, "$setOnInsert": {"responseCount": 0}},
            upsert=True,
        )
        return await self.load_campaign(campaign.id)

    async def count_responses(self, campaign_id: str) -> int:
        return await self.responses.count_documents({"campaignId": campaign_id})

    async def reserve_slot(self, campaign_id: str) -> bool:
        doc = await self.campaigns.find_one_and_update(
            slot_filter(campaign_id),
            {"$inc": {"responseCount": 1}},
            return_document=ReturnDocument.AFTER,
        )
        return doc is not None

    async def release_slot(self, campaign_id: str) -> None:
        await self.campaigns.update_one(
            {"_id": campaign_id, "responseCount": {"$gt": 0}},
            {"$inc": {"responseCount": -1}},
        )

    async def insert_response(self, response: Response, dedupe_key: Optional[str] = None) -> None:
        doc = _to_doc(response)
        if dedupe_key:
            doc["dedupeKey"] = dedupe_key
        try:
            await self.responses.insert_one(doc)
        except DuplicateKeyError as e:
            if not is_dedupe_collision(e):
                raise
            raise DuplicateSubmission("You have already submitted a response to this campaign")

    async def find_response_by_user(self, campaign_id: str, user_id: str) -> Optional[Response]:
        doc = await self.responses.find_one({"campaignId": campaign_id, "userId": user_id})
        return Response(**_from_doc(doc)) if doc else None

    async def load_responses(self, campaign_id: str, status: Optional[ResponseStatus] = None) -> List[Response]:
        query: Dict[str, Any] = {"campaignId": campaign_id}
        if status:
            query["status"] = status.value
        items = []
        async for doc in self.responses.find(query, sort=[("submittedAt", -1)]):
            items.append(Response(**_from_doc(doc)))
        return items

    async def load_response(self, response_id: str) -> Optional[Response]:
        doc = await self.responses.find_one({"_id": response_id})
        return Response(**_from_doc(doc)) if doc else None

    async def update_response(self, response: Response) -> bool:
        """Write the review state of one response in a single document update."""
        doc = response.model_dump(include=set(REVIEW_FIELDS))
        result = await self.responses.update_one({"_id": response.id}, {"$set": doc})
        return result.matched_count == 1


repository = MongoRepository()


def get_repository() -> Repository:
    return repository

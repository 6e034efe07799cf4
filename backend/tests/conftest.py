import asyncio
import os
import tempfile
from datetime import datetime
from typing import Dict, List, Optional

# keep attachments written during tests out of the working tree
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="recruitment-uploads-"))

import pytest
from fastapi.testclient import TestClient

from recruitment.database import get_repository
from recruitment.errors import DuplicateSubmission
from recruitment.main import app
from recruitment.schemas import Campaign, Response, ResponseStatus
from recruitment.storage import LocalAttachmentStore, get_attachment_store


class InMemoryRepository:
    """Repository fake with the same admission semantics as MongoRepository."""

    def __init__(self):
        self.campaigns: Dict[str, Campaign] = {}
        self.responses: Dict[str, Response] = {}
        self.dedupe_keys = set()

    async def load_campaign(self, campaign_id: str) -> Optional[Campaign]:
        await asyncio.sleep(0)
        return self.campaigns.get(campaign_id)

    async def list_campaigns(self, entity_type=None, entity_id=None) -> List[Campaign]:
        items = [
            c for c in self.campaigns.values()
            if (not entity_type or c.linkedEntity.type == entity_type)
            and (not entity_id or c.linkedEntity.id == entity_id)
        ]
        return sorted(items, key=lambda c: c.createdAt or datetime.min, reverse=True)

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        existing = self.campaigns.get(campaign.id)
        update = {"responseCount": existing.responseCount if existing else 0}
        if existing and existing.createdAt:
            update["createdAt"] = existing.createdAt
        self.campaigns[campaign.id] = campaign.model_copy(update=update)
        return self.campaigns[campaign.id]

    async def count_responses(self, campaign_id: str) -> int:
        await asyncio.sleep(0)
        return sum(1 for r in self.responses.values() if r.campaignId == campaign_id)

    async def reserve_slot(self, campaign_id: str) -> bool:
        await asyncio.sleep(0)
        # check and increment with no await in between, like a single findOneAndUpdate
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            return False
        if campaign.responseLimit is not None and campaign.responseCount >= campaign.responseLimit:
            return False
        self.campaigns[campaign_id] = campaign.model_copy(update={"responseCount": campaign.responseCount + 1})
        return True

    async def release_slot(self, campaign_id: str) -> None:
        campaign = self.campaigns[campaign_id]
        self.campaigns[campaign_id] = campaign.model_copy(
            update={"responseCount": max(0, campaign.responseCount - 1)}
        )

    async def insert_response(self, response: Response, dedupe_key: Optional[str] = None) -> None:
        await asyncio.sleep(0)
        if dedupe_key:
            if dedupe_key in self.dedupe_keys:
                raise DuplicateSubmission("You have already submitted a response to this campaign")
            self.dedupe_keys.add(dedupe_key)
        self.responses[response.id] = response

    async def find_response_by_user(self, campaign_id: str, user_id: str) -> Optional[Response]:
        for r in self.responses.values():
            if r.campaignId == campaign_id and r.userId == user_id:
                return r
        return None

    async def load_responses(self, campaign_id: str, status: Optional[ResponseStatus] = None) -> List[Response]:
        items = [
            r for r in self.responses.values()
            if r.campaignId == campaign_id and (status is None or r.status == status)
        ]
        return sorted(items, key=lambda r: r.submittedAt, reverse=True)

    async def load_response(self, response_id: str) -> Optional[Response]:
        return self.responses.get(response_id)

    async def update_response(self, response: Response) -> bool:
        if response.id not in self.responses:
            return False
        self.responses[response.id] = response
        return True


def make_campaign(**overrides) -> Campaign:
    data = {
        "id": "crew-2024",
        "title": {"en": "Stage Crew 2024", "ta": "மேடை குழு 2024"},
        "description": "Help us run the festival",
        "role": "crew",
        "linkedEntity": {"type": "project", "id": "festival"},
        "fields": [
            {"id": "intro", "type": "section-break", "label": "About you"},
            {"id": "name", "type": "short-text", "label": "Full name", "required": True},
            {"id": "email", "type": "email", "label": "Email", "required": True},
            {"id": "skills", "type": "checkboxes", "label": "Skills", "options": ["JS", "Go", "Python"]},
            {"id": "shift", "type": "dropdown", "label": "Shift", "options": ["Morning", "Evening"]},
            {"id": "age", "type": "number", "label": "Age", "settings": {"min": 18, "max": 68}},
        ],
        "startDate": datetime(2024, 1, 1),
        "endDate": datetime(2024, 1, 10),
        "responseLimit": None,
        "status": "active",
    }
    data.update(overrides)
    return Campaign(**data)


def make_response(response_id: str, answers: Dict[str, object], **overrides) -> Response:
    data = {
        "id": response_id,
        "campaignId": "crew-2024",
        "referenceNumber": f"REC-20240105-{response_id.upper()}",
        "submittedAt": datetime(2024, 1, 5, 12, 0),
        "userName": "Applicant",
        "userEmail": "applicant@example.com",
        "answers": [{"fieldId": k, "value": v} for k, v in answers.items()],
    }
    data.update(overrides)
    return Response(**data)


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def store(tmp_path):
    return LocalAttachmentStore(str(tmp_path / "uploads"))


@pytest.fixture
def client(repository, store):
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_attachment_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()

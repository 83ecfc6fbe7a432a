"""Beanie ODM document models and MongoDB initialization for the SLF compliance engine."""

import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from beanie import Document, init_beanie
from dotenv import load_dotenv
from pydantic import Field
from pymongo import AsyncMongoClient

from schemas import (
    ComplianceStatus,
    DocumentStatus,
    Geotag,
    InspectionProject,
    InspectorInfo,
    Role,
    VerificationMethod,
)

load_dotenv()

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
DB_NAME = os.getenv("MONGODB_DB", "slf")


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Documents & approval workflow
# ---------------------------------------------------------------------------


class ComplianceDocumentRecord(Document):
    """Uploaded compliance document or inspection report."""

    id: str = Field(default_factory=_new_id)
    project_id: str
    name: str = ""
    document_type: str  # required artifact code or "REPORT"
    status: DocumentStatus = DocumentStatus.PENDING
    compliance_status: ComplianceStatus = ComplianceStatus.UNSET
    created_by: str
    verified_by_admin_team: Optional[str] = None
    verified_at: Optional[datetime] = None
    admin_team_feedback: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)  # original filename, size, checklist linkage
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    class Settings:
        name = "documents"
        indexes = [
            "project_id",
            "status",
        ]


class TeamMemberRecord(Document):
    """One (project, user, role) row of a project team roster."""

    id: str = Field(default_factory=_new_id)
    project_id: str
    user_id: str
    role: Role
    assigned_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "project_teams"
        indexes = [
            [("project_id", 1), ("role", 1)],
        ]


class NotificationRecord(Document):
    """Notification row. Write-once except for ``read``."""

    id: str = Field(default_factory=_new_id)
    recipient_id: str
    type: str
    message: str
    sender_id: Optional[str] = None
    project_id: Optional[str] = None
    read: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "notifications"
        indexes = [
            [("recipient_id", 1), ("read", 1)],
        ]


# ---------------------------------------------------------------------------
# Checklists & inspections
# ---------------------------------------------------------------------------


class ChecklistTemplateRecord(Document):
    id: str = Field(default_factory=_new_id)
    name: str = ""
    category: Optional[str] = None
    description: str = ""
    applicable_for: List[str] = Field(default_factory=list)

    class Settings:
        name = "checklist_templates"


class ChecklistItemRecord(Document):
    id: str = Field(default_factory=_new_id)
    template_id: str
    item_name: str = ""
    category: Optional[str] = None
    sort_order: int = 0
    is_mandatory: bool = True

    class Settings:
        name = "checklist_items"
        indexes = [
            [("template_id", 1), ("sort_order", 1)],
        ]


class InspectionRecord(Document):
    """Scheduled inspection.

    Project and inspector summaries are embedded so a batch of inspections
    hydrates in a single query.
    """

    id: str = Field(default_factory=_new_id)
    project_id: str
    checklist_template_id: Optional[str] = None
    assigned_to: Optional[str] = None
    status: str = "scheduled"
    scheduled_date: Optional[datetime] = None
    project: Optional[InspectionProject] = None
    inspector: Optional[InspectorInfo] = None
    created_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "inspections"
        indexes = [
            "project_id",
            "assigned_to",
        ]


class InspectionResponseRecord(Document):
    id: str = Field(default_factory=_new_id)
    inspection_id: str
    checklist_item_id: str
    response: Dict[str, Any] = Field(default_factory=dict)
    sample_number: Optional[int] = None
    geotag: Optional[Geotag] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    class Settings:
        name = "inspection_responses"
        indexes = [
            "inspection_id",
        ]


class InspectionPhotoRecord(Document):
    id: str = Field(default_factory=_new_id)
    inspection_id: str
    checklist_item_id: Optional[str] = None
    photo_url: str
    caption: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    verification_method: VerificationMethod = VerificationMethod.GPS_AUTOMATIC
    requires_review: bool = False
    location_description: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "inspection_photos"
        indexes = [
            "inspection_id",
        ]


DOCUMENT_MODELS = [
    ComplianceDocumentRecord,
    TeamMemberRecord,
    NotificationRecord,
    ChecklistTemplateRecord,
    ChecklistItemRecord,
    InspectionRecord,
    InspectionResponseRecord,
    InspectionPhotoRecord,
]


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_client: Optional[AsyncMongoClient] = None


async def init_db():
    """Connect to MongoDB and register Beanie document models."""
    global _client
    _client = AsyncMongoClient(MONGODB_URI)
    await init_beanie(database=_client[DB_NAME], document_models=DOCUMENT_MODELS)


async def close_db():
    """Close the MongoDB connection."""
    global _client
    if _client:
        await _client.close()
        _client = None

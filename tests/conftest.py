"""Shared fixtures for the SLF compliance engine test suite."""

from __future__ import annotations

import asyncio
import copy
import json
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from checklist_catalog import DEFAULT_CONFIG_PATH, ChecklistCatalog
from compliance_cache import ComplianceCache
from errors import InvalidTransitionError, NotFoundError, StoreError
from notification_fanout import NotificationFanout
from schemas import (
    ChecklistResponseRow,
    ComplianceDocument,
    DocumentStatus,
    Inspection,
    InspectionPhoto,
    InspectionProject,
    InspectorInfo,
    Notification,
    Role,
    StoredChecklistItem,
    StoredChecklistTemplate,
    TeamMember,
)
from store import StoreClient
from workflow_engine import StatusWorkflowEngine


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FIXED_NOW = datetime(2026, 3, 2, 9, 30, 0, tzinfo=timezone.utc)

PROJECT_ID = "proj-1"
CREATOR_ID = "drafter-1"
ADMIN_TEAM_ID = "admin-team-1"
PROJECT_LEAD_ID = "pl-1"
ADMIN_LEAD_ID = "al-1"
HEAD_CONSULTANT_ID = "hc-1"
SUPERADMIN_ID = "sa-1"


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class FakeStore(StoreClient):
    """In-memory StoreClient that counts every call by operation name."""

    def __init__(self):
        self.documents: dict[str, ComplianceDocument] = {}
        self.inspections: dict[str, Inspection] = {}
        self.checklist_items: list[StoredChecklistItem] = []
        self.templates: list[StoredChecklistTemplate] = []
        self.responses: dict[str, ChecklistResponseRow] = {}
        self.photos: list[InspectionPhoto] = []
        self.team: list[TeamMember] = []
        self.notifications: dict[str, Notification] = {}
        self.calls: Counter = Counter()

        self.failing_response_ids: set[str] = set()
        self.fail_ops: set[str] = set()
        # ops that yield to the event loop before completing
        self.pause_ops: set[str] = set()

    @property
    def query_count(self) -> int:
        return sum(self.calls.values())

    async def _hit(self, op: str) -> None:
        self.calls[op] += 1
        if op in self.pause_ops:
            await asyncio.sleep(0)
        if op in self.fail_ops:
            raise StoreError(f"{op} failed: connection reset", operation=op)

    # -- documents ----------------------------------------------------------

    async def get_document(self, document_id):
        await self._hit("get_document")
        return self.documents.get(document_id)

    async def update_document(self, document_id, fields, expected_status=None):
        await self._hit("update_document")
        if document_id not in self.documents:
            raise NotFoundError(f"Document {document_id} not found")
        stored = self.documents[document_id]
        if expected_status is not None and stored.status != expected_status:
            raise InvalidTransitionError(
                stored.status.value,
                DocumentStatus(fields.get("status", expected_status)).value,
                "status changed since it was read",
            )
        updated = stored.model_copy(update=fields)
        self.documents[document_id] = updated
        return updated

    # -- inspections & checklists -------------------------------------------

    async def find_inspections(self, inspection_ids):
        await self._hit("find_inspections")
        return [self.inspections[i] for i in inspection_ids if i in self.inspections]

    async def find_inspection(self, inspection_id):
        await self._hit("find_inspection")
        return self.inspections.get(inspection_id)

    async def find_checklist_items(self, template_ids):
        await self._hit("find_checklist_items")
        items = [i for i in self.checklist_items if i.template_id in template_ids]
        return sorted(items, key=lambda i: (i.category or "", i.sort_order))

    async def find_checklist_templates(self):
        await self._hit("find_checklist_templates")
        return list(self.templates)

    async def find_responses(self, inspection_id):
        await self._hit("find_responses")
        return [r for r in self.responses.values() if r.inspection_id == inspection_id]

    async def find_photos(self, inspection_id):
        await self._hit("find_photos")
        return [p for p in self.photos if p.inspection_id == inspection_id]

    async def insert_responses(self, rows):
        await self._hit("insert_responses")
        for row in rows:
            rid = f"resp-{len(self.responses) + 1}"
            self.responses[rid] = row.model_copy(update={"id": rid})
        return len(rows)

    async def update_response(self, response_id, fields):
        await self._hit("update_response")
        if response_id in self.failing_response_ids:
            raise StoreError(f"update_response failed for {response_id}")
        if response_id not in self.responses:
            raise NotFoundError(f"Response {response_id} not found")
        self.responses[response_id] = self.responses[response_id].model_copy(update=fields)

    # -- team & notifications -----------------------------------------------

    async def find_team_member(self, project_id, role):
        await self._hit("find_team_member")
        for member in self.team:
            if member.project_id == project_id and member.role == role:
                return member
        return None

    async def insert_notification(self, notification):
        await self._hit("insert_notification")
        nid = f"notif-{len(self.notifications) + 1}"
        saved = notification.model_copy(update={"id": nid, "created_at": FIXED_NOW})
        self.notifications[nid] = saved
        return saved

    async def mark_notification_read(self, notification_id):
        await self._hit("mark_notification_read")
        if notification_id not in self.notifications:
            return False
        self.notifications[notification_id] = self.notifications[notification_id].model_copy(
            update={"read": True}
        )
        return True


class FakeClock:
    """Monotonic clock whose time only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def make_document(**overrides) -> ComplianceDocument:
    """Factory for a pending compliance document created by the drafter."""
    defaults = {
        "id": "doc-1",
        "project_id": PROJECT_ID,
        "name": "Gambar Struktur Lantai 1",
        "document_type": "GAMBAR_STRUKTUR",
        "status": DocumentStatus.PENDING,
        "created_by": CREATOR_ID,
        "metadata": {"original_filename": "struktur_lt1.pdf", "size": 20480},
    }
    defaults.update(overrides)
    return ComplianceDocument(**defaults)


def make_inspection(inspection_id: str = "insp-1", **overrides) -> Inspection:
    """Factory for a scheduled inspection joined with project and inspector."""
    defaults = {
        "id": inspection_id,
        "project_id": PROJECT_ID,
        "checklist_template_id": "m21",
        "assigned_to": "insp-user-1",
        "status": "scheduled",
        "scheduled_date": FIXED_NOW,
        "project": InspectionProject(id=PROJECT_ID, name="Gedung Kantor Dinas", city="Bandung"),
        "inspector": InspectorInfo(id="insp-user-1", full_name="Rina Saputra", email="rina@example.com"),
    }
    defaults.update(overrides)
    return Inspection(**defaults)


def make_item(item_id: str, template_id: str = "m21", **overrides) -> StoredChecklistItem:
    defaults = {
        "id": item_id,
        "template_id": template_id,
        "item_name": item_id.replace("_", " ").title(),
        "category": "keandalan",
        "sort_order": 0,
    }
    defaults.update(overrides)
    return StoredChecklistItem(**defaults)


def make_response_row(response_id: str, inspection_id: str = "insp-1", **overrides) -> ChecklistResponseRow:
    defaults = {
        "id": response_id,
        "inspection_id": inspection_id,
        "checklist_item_id": "pondasi",
        "response": {"pengamatan_visual": "Tidak Rusak"},
        "created_at": FIXED_NOW,
    }
    defaults.update(overrides)
    return ChecklistResponseRow(**defaults)


def full_team() -> list[TeamMember]:
    return [
        TeamMember(project_id=PROJECT_ID, user_id=ADMIN_TEAM_ID, role=Role.ADMIN_TEAM),
        TeamMember(project_id=PROJECT_ID, user_id=PROJECT_LEAD_ID, role=Role.PROJECT_LEAD),
        TeamMember(project_id=PROJECT_ID, user_id=ADMIN_LEAD_ID, role=Role.ADMIN_LEAD),
        TeamMember(project_id=PROJECT_ID, user_id=HEAD_CONSULTANT_ID, role=Role.HEAD_CONSULTANT),
    ]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def raw_config() -> dict[str, Any]:
    """Deep copy of the shipped checklist configuration, safe to mutate."""
    return copy.deepcopy(json.loads(DEFAULT_CONFIG_PATH.read_text(encoding="utf-8")))


@pytest.fixture
def catalog() -> ChecklistCatalog:
    return ChecklistCatalog.from_file(DEFAULT_CONFIG_PATH)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(store, clock) -> ComplianceCache:
    return ComplianceCache(store, clock=clock)


@pytest.fixture
def fanout(store) -> NotificationFanout:
    return NotificationFanout(store)


@pytest.fixture
def engine(cache, fanout) -> StatusWorkflowEngine:
    return StatusWorkflowEngine(cache, fanout, now=lambda: FIXED_NOW)


@pytest.fixture
def seeded_store(store) -> FakeStore:
    """Store holding one pending document and a full project team."""
    doc = make_document()
    store.documents[doc.id] = doc
    store.team.extend(full_team())
    return store


def document_in(store: FakeStore, status: DocumentStatus, doc_id: str = "doc-1", **overrides) -> ComplianceDocument:
    doc = make_document(id=doc_id, status=status, **overrides)
    store.documents[doc.id] = doc
    return doc


def notifications_for(store: FakeStore, recipient_id: str) -> list[Notification]:
    return [n for n in store.notifications.values() if n.recipient_id == recipient_id]


def only(items: list, predicate=None) -> Optional[Any]:
    matches = [i for i in items if predicate is None or predicate(i)]
    assert len(matches) == 1, f"expected exactly one match, got {len(matches)}"
    return matches[0]

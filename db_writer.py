"""MongoDB-backed StoreClient built on the Beanie document models in db.py."""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from beanie import UpdateResponse

from db import (
    ChecklistItemRecord,
    ChecklistTemplateRecord,
    ComplianceDocumentRecord,
    InspectionPhotoRecord,
    InspectionRecord,
    InspectionResponseRecord,
    NotificationRecord,
    TeamMemberRecord,
)
from errors import ComplianceError, InvalidTransitionError, NotFoundError, StoreError
from schemas import (
    ChecklistResponseRow,
    ComplianceDocument,
    DocumentStatus,
    Inspection,
    InspectionPhoto,
    Notification,
    Role,
    StoredChecklistItem,
    StoredChecklistTemplate,
    TeamMember,
)
from store import StoreClient

log = logging.getLogger(__name__)


@contextmanager
def _store_call(operation: str, **context):
    """Wrap driver/ODM failures in StoreError; engine errors pass through."""
    try:
        yield
    except ComplianceError:
        raise
    except Exception as e:
        log.exception("Store operation %s failed (%s)", operation, context)
        raise StoreError(f"{operation} failed: {e}", operation=operation, **context) from e


def _to_document(rec: ComplianceDocumentRecord) -> ComplianceDocument:
    return ComplianceDocument.model_validate(rec.model_dump())


class MongoStore(StoreClient):
    """StoreClient over MongoDB. Requires db.init_db() to have run."""

    # -----------------------------------------------------------------------
    # Documents
    # -----------------------------------------------------------------------

    async def get_document(self, document_id: str) -> Optional[ComplianceDocument]:
        with _store_call("get_document", document_id=document_id):
            rec = await ComplianceDocumentRecord.get(document_id)
        return _to_document(rec) if rec else None

    async def update_document(
        self,
        document_id: str,
        fields: dict[str, Any],
        expected_status: Optional[DocumentStatus] = None,
    ) -> ComplianceDocument:
        query: dict[str, Any] = {"_id": document_id}
        if expected_status is not None:
            query["status"] = DocumentStatus(expected_status).value
        with _store_call("update_document", document_id=document_id):
            rec = await ComplianceDocumentRecord.find_one(query).update(
                {"$set": {**fields, "updated_at": datetime.now(timezone.utc)}},
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
            if rec is None:
                stored = await ComplianceDocumentRecord.get(document_id)
        if rec is not None:
            return _to_document(rec)
        if stored is None:
            raise NotFoundError(f"Document {document_id} not found", document_id=document_id)
        target = fields.get("status", expected_status)
        raise InvalidTransitionError(
            DocumentStatus(stored.status).value,
            DocumentStatus(target).value,
            f"status changed since it was read as '{DocumentStatus(expected_status).value}'",
        )

    # -----------------------------------------------------------------------
    # Inspections & checklists
    # -----------------------------------------------------------------------

    async def find_inspections(self, inspection_ids: list[str]) -> list[Inspection]:
        with _store_call("find_inspections", count=len(inspection_ids)):
            recs = await InspectionRecord.find({"_id": {"$in": list(inspection_ids)}}).to_list()
        return [Inspection.model_validate(r.model_dump()) for r in recs]

    async def find_inspection(self, inspection_id: str) -> Optional[Inspection]:
        with _store_call("find_inspection", inspection_id=inspection_id):
            rec = await InspectionRecord.get(inspection_id)
        return Inspection.model_validate(rec.model_dump()) if rec else None

    async def find_checklist_items(self, template_ids: list[str]) -> list[StoredChecklistItem]:
        with _store_call("find_checklist_items", count=len(template_ids)):
            recs = await (
                ChecklistItemRecord.find({"template_id": {"$in": list(template_ids)}})
                .sort(+ChecklistItemRecord.category, +ChecklistItemRecord.sort_order)
                .to_list()
            )
        return [StoredChecklistItem.model_validate(r.model_dump()) for r in recs]

    async def find_checklist_templates(self) -> list[StoredChecklistTemplate]:
        with _store_call("find_checklist_templates"):
            templates = await ChecklistTemplateRecord.find_all().to_list()
            items = await ChecklistItemRecord.find_all().sort(+ChecklistItemRecord.sort_order).to_list()

        by_template: dict[str, list[dict]] = defaultdict(list)
        for item in items:
            by_template[item.template_id].append(item.model_dump())

        return [
            StoredChecklistTemplate.model_validate({
                **t.model_dump(),
                "checklist_items": by_template.get(t.id, []),
            })
            for t in templates
        ]

    async def find_responses(self, inspection_id: str) -> list[ChecklistResponseRow]:
        with _store_call("find_responses", inspection_id=inspection_id):
            recs = await InspectionResponseRecord.find({"inspection_id": inspection_id}).to_list()
        return [ChecklistResponseRow.model_validate(r.model_dump()) for r in recs]

    async def find_photos(self, inspection_id: str) -> list[InspectionPhoto]:
        with _store_call("find_photos", inspection_id=inspection_id):
            recs = await InspectionPhotoRecord.find({"inspection_id": inspection_id}).to_list()
        return [InspectionPhoto.model_validate(r.model_dump()) for r in recs]

    async def insert_responses(self, rows: list[ChecklistResponseRow]) -> int:
        records = [
            InspectionResponseRecord(**row.model_dump(exclude={"id"}, exclude_none=True))
            for row in rows
        ]
        with _store_call("insert_responses", count=len(records)):
            await InspectionResponseRecord.insert_many(records)
        return len(records)

    async def update_response(self, response_id: str, fields: dict[str, Any]) -> None:
        with _store_call("update_response", response_id=response_id):
            rec = await InspectionResponseRecord.get(response_id)
            if not rec:
                raise NotFoundError(f"Response {response_id} not found", response_id=response_id)
            await rec.set({**fields, "updated_at": datetime.now(timezone.utc)})

    # -----------------------------------------------------------------------
    # Team roster & notifications
    # -----------------------------------------------------------------------

    async def find_team_member(self, project_id: str, role: Role) -> Optional[TeamMember]:
        with _store_call("find_team_member", project_id=project_id, role=role.value):
            rec = await TeamMemberRecord.find_one({"project_id": project_id, "role": role.value})
        return TeamMember.model_validate(rec.model_dump()) if rec else None

    async def insert_notification(self, notification: Notification) -> Notification:
        rec = NotificationRecord(**notification.model_dump(exclude={"id", "created_at"}))
        with _store_call("insert_notification", recipient_id=notification.recipient_id):
            await rec.insert()
        return notification.model_copy(update={"id": rec.id, "created_at": rec.created_at})

    async def mark_notification_read(self, notification_id: str) -> bool:
        with _store_call("mark_notification_read", notification_id=notification_id):
            rec = await NotificationRecord.get(notification_id)
            if not rec:
                return False
            await rec.set({NotificationRecord.read: True})
        return True

"""Notification fan-out for the document approval chain.

Each status transition notifies the next person in the chain: the project
lead (or admin lead when the project has none) after admin-team review, the
admin lead after project-lead approval, the head consultant after admin-lead
approval, and the document creator once a final decision is made.  A project
without anyone in the target role is not an error; the notification is
skipped and logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from errors import NotFoundError
from schemas import DocumentStatus, Notification, Role, TransitionEvent
from store import StoreClient

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    notification_type: str
    recipient_roles: tuple[Role, ...] = ()  # tried in order, first hit wins
    to_creator: bool = False


ROUTES: dict[DocumentStatus, Route] = {
    DocumentStatus.VERIFIED_BY_ADMIN_TEAM: Route(
        "admin_team_verification_complete", (Role.PROJECT_LEAD, Role.ADMIN_LEAD),
    ),
    DocumentStatus.REVISION_REQUESTED: Route(
        "admin_team_revision_request", (Role.PROJECT_LEAD, Role.ADMIN_LEAD),
    ),
    DocumentStatus.APPROVED_BY_PL: Route("project_lead_approval", (Role.ADMIN_LEAD,)),
    DocumentStatus.APPROVED_BY_ADMIN_LEAD: Route("admin_lead_approval", (Role.HEAD_CONSULTANT,)),
    DocumentStatus.APPROVED: Route("document_approved", to_creator=True),
    DocumentStatus.REJECTED: Route("document_rejected", to_creator=True),
    DocumentStatus.CANCELLED: Route("document_cancelled", to_creator=True),
    DocumentStatus.PENDING: Route("document_resubmitted", (Role.ADMIN_TEAM,)),
}


def compose_message(event: TransitionEvent) -> str:
    doc = event.document
    noun = "Laporan" if doc.is_report else "Dokumen"
    subject = f'{noun} "{doc.name or doc.id}"'
    notes = (event.notes or "").strip()

    if event.to_status == DocumentStatus.VERIFIED_BY_ADMIN_TEAM:
        return f"{subject} telah diverifikasi oleh admin team."
    if event.to_status == DocumentStatus.REVISION_REQUESTED:
        return f"{subject} perlu direvisi: {notes}" if notes else f"{subject} perlu direvisi."
    if event.to_status == DocumentStatus.APPROVED_BY_PL:
        return f"{subject} telah disetujui oleh project lead."
    if event.to_status == DocumentStatus.APPROVED_BY_ADMIN_LEAD:
        return f"{subject} telah disetujui oleh admin lead dan menunggu persetujuan head consultant."
    if event.to_status == DocumentStatus.APPROVED:
        return f"{subject} telah disetujui."
    if event.to_status == DocumentStatus.REJECTED:
        return f"{subject} ditolak: {notes}" if notes else f"{subject} ditolak."
    if event.to_status == DocumentStatus.CANCELLED:
        return f"{subject} dibatalkan."
    return f"{subject} telah diajukan ulang setelah revisi."


class NotificationFanout:
    """Resolves the next recipient for a transition and writes the notification row."""

    def __init__(self, store: StoreClient):
        self.store = store

    async def resolve_recipient(self, event: TransitionEvent) -> Optional[str]:
        route = ROUTES.get(event.to_status)
        if route is None:
            return None
        if route.to_creator:
            return event.document.created_by
        for role in route.recipient_roles:
            member = await self.store.find_team_member(event.document.project_id, role)
            if member is not None:
                return member.user_id
        return None

    async def notify(self, event: TransitionEvent) -> Optional[Notification]:
        """Emit the notification for ``event``. Returns None when nobody is there to receive it."""
        route = ROUTES.get(event.to_status)
        if route is None:
            log.debug("No notification route for status %s", event.to_status.value)
            return None

        recipient_id = await self.resolve_recipient(event)
        if recipient_id is None:
            log.warning(
                "No %s found for project %s; skipping %s notification for document %s",
                "/".join(r.value for r in route.recipient_roles),
                event.document.project_id,
                route.notification_type,
                event.document.id,
            )
            return None

        notification = Notification(
            recipient_id=recipient_id,
            type=route.notification_type,
            message=compose_message(event),
            sender_id=event.actor_id,
            project_id=event.document.project_id,
            data={
                "document_id": event.document.id,
                "from_status": event.from_status.value,
                "to_status": event.to_status.value,
            },
        )
        saved = await self.store.insert_notification(notification)
        log.info(
            "Notified %s (%s) about document %s",
            recipient_id, route.notification_type, event.document.id,
        )
        return saved

    async def mark_as_read(self, notification_id: str) -> None:
        if not await self.store.mark_notification_read(notification_id):
            raise NotFoundError(
                f"Notification {notification_id} not found", notification_id=notification_id,
            )

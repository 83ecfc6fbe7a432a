"""Document approval workflow for SLF compliance documents and inspection reports.

Manages status transitions with:
  - Transition validation (TRANSITIONS table)
  - Self-verification and stage-role checks
  - Side effects (verifier stamp, feedback, compliance status, approval history)
  - Notification to the next person in the approval chain

    pending ─► verified_by_admin_team ─► approved_by_pl ─► approved_by_admin_lead ─► approved
       │                                                                        └──► rejected
       └────► revision_requested ──(resubmit by creator)──► pending

Any non-terminal document can be cancelled by a superadmin or admin lead.

Each transition re-reads the stored document and writes the new status only if
the stored status is still the one it was validated against, so of two
concurrent transitions from the same status one fails with
InvalidTransitionError.

The status write and the notification write are sequential and not atomic: a
failed notification is logged and the status change stands.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from compliance_cache import ComplianceCache
from errors import (
    AuthorizationError,
    ComplianceError,
    InvalidTransitionError,
    ValidationError,
)
from notification_fanout import NotificationFanout
from schemas import (
    TERMINAL_STATUSES,
    ComplianceDocument,
    ComplianceStatus,
    DocumentStatus,
    Role,
    TransitionEvent,
    TransitionResult,
)

log = logging.getLogger(__name__)


# (from, to) → roles allowed to perform it
TRANSITIONS: dict[tuple[DocumentStatus, DocumentStatus], frozenset[Role]] = {
    (DocumentStatus.PENDING, DocumentStatus.VERIFIED_BY_ADMIN_TEAM): frozenset({Role.ADMIN_TEAM}),
    (DocumentStatus.PENDING, DocumentStatus.REVISION_REQUESTED): frozenset({Role.ADMIN_TEAM}),
    (DocumentStatus.VERIFIED_BY_ADMIN_TEAM, DocumentStatus.APPROVED_BY_PL): frozenset({Role.PROJECT_LEAD}),
    (DocumentStatus.APPROVED_BY_PL, DocumentStatus.APPROVED_BY_ADMIN_LEAD): frozenset({Role.ADMIN_LEAD}),
    (DocumentStatus.APPROVED_BY_ADMIN_LEAD, DocumentStatus.APPROVED): frozenset({Role.HEAD_CONSULTANT}),
    (DocumentStatus.APPROVED_BY_ADMIN_LEAD, DocumentStatus.REJECTED): frozenset({Role.HEAD_CONSULTANT}),
}

CANCEL_ROLES = frozenset({Role.SUPERADMIN, Role.ADMIN_LEAD})

NOTES_REQUIRED = frozenset({DocumentStatus.REVISION_REQUESTED, DocumentStatus.REJECTED})

ADMIN_TEAM_REVIEW = frozenset({DocumentStatus.VERIFIED_BY_ADMIN_TEAM, DocumentStatus.REVISION_REQUESTED})

ACTIONS: dict[DocumentStatus, str] = {
    DocumentStatus.VERIFIED_BY_ADMIN_TEAM: "verify",
    DocumentStatus.REVISION_REQUESTED: "request_revision",
    DocumentStatus.APPROVED_BY_PL: "approve_project_lead",
    DocumentStatus.APPROVED_BY_ADMIN_LEAD: "approve_admin_lead",
    DocumentStatus.APPROVED: "approve",
    DocumentStatus.REJECTED: "reject",
    DocumentStatus.CANCELLED: "cancel",
    DocumentStatus.PENDING: "resubmit",
}

COMPLIANCE_BY_STATUS: dict[DocumentStatus, ComplianceStatus] = {
    DocumentStatus.APPROVED: ComplianceStatus.COMPLIANT,
    DocumentStatus.REJECTED: ComplianceStatus.NON_COMPLIANT,
}


def _coerce_status(value: Any) -> DocumentStatus:
    try:
        return DocumentStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown document status '{value}'",
            allowed=[s.value for s in DocumentStatus],
        ) from None


def _coerce_role(value: Any) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(f"Unknown role '{value}'", allowed=[r.value for r in Role]) from None


def roles_for(current: DocumentStatus, target: DocumentStatus) -> Optional[frozenset[Role]]:
    """Roles allowed to move a document from ``current`` to ``target``, or None if the edge is not allowed."""
    if target == DocumentStatus.CANCELLED and current not in TERMINAL_STATUSES:
        return CANCEL_ROLES
    return TRANSITIONS.get((current, target))


def allowed_targets(status: DocumentStatus | str) -> list[DocumentStatus]:
    """Statuses reachable from ``status`` through transition(), in table order."""
    current = _coerce_status(status)
    targets = [to for (frm, to) in TRANSITIONS if frm == current]
    if current not in TERMINAL_STATUSES:
        targets.append(DocumentStatus.CANCELLED)
    return targets


def validate_transition(document: ComplianceDocument, target: DocumentStatus | str) -> dict:
    """
    Validate whether a target status is reachable from the document's current status.

    Returns:
        {"valid": bool, "from": str, "to": str, "reason": str|None}
    """
    current = document.status
    try:
        target = DocumentStatus(target)
    except ValueError:
        return {"valid": False, "from": current.value, "to": str(target),
                "reason": f"Unknown status: {target}"}

    if roles_for(current, target) is None:
        if current in TERMINAL_STATUSES:
            reason = f"Document is already {current.value}"
        elif current == DocumentStatus.REVISION_REQUESTED and target == DocumentStatus.PENDING:
            reason = "Use resubmit to send a revised document back for review"
        else:
            reason = f"Cannot move from '{current.value}' to '{target.value}'"
        return {"valid": False, "from": current.value, "to": target.value, "reason": reason}

    return {"valid": True, "from": current.value, "to": target.value, "reason": None}


class StatusWorkflowEngine:
    """Applies role-checked status transitions and triggers notifications."""

    def __init__(
        self,
        cache: ComplianceCache,
        fanout: NotificationFanout,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.cache = cache
        self.fanout = fanout
        self._now = now

    async def _load(self, document: ComplianceDocument | str) -> ComplianceDocument:
        """Current stored state of ``document``; a passed-in instance only supplies the id."""
        document_id = document.id if isinstance(document, ComplianceDocument) else document
        return await self.cache.refresh_document(document_id)

    async def transition(
        self,
        document: ComplianceDocument | str,
        actor_role: Role | str,
        actor_id: str,
        target_status: DocumentStatus | str,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move a document to ``target_status`` on behalf of ``actor_id``.

        Checks, in order:
            1. (current → target) is in the transition table, else InvalidTransitionError
            2. actor is not the document's creator, else AuthorizationError
            3. actor_role is assigned to the stage, else AuthorizationError
            4. revision/rejection carries notes, else ValidationError
        """
        doc = await self._load(document)
        role = _coerce_role(actor_role)
        target = _coerce_status(target_status)
        current = doc.status

        check = validate_transition(doc, target)
        if not check["valid"]:
            raise InvalidTransitionError(current.value, target.value, check["reason"])

        if actor_id == doc.created_by:
            raise AuthorizationError(
                "Document creators cannot verify or approve their own documents",
                document_id=doc.id,
                actor_id=actor_id,
            )

        roles = roles_for(current, target)
        if role not in roles:
            raise AuthorizationError(
                f"Role '{role.value}' cannot move a document from '{current.value}' to '{target.value}'",
                document_id=doc.id,
                required_roles=sorted(r.value for r in roles),
            )

        notes = (notes or "").strip() or None
        if target in NOTES_REQUIRED and not notes:
            raise ValidationError(
                f"Notes are required when moving a document to '{target.value}'",
                document_id=doc.id,
            )

        now = self._now()
        fields: dict[str, Any] = {"status": target}
        if target in ADMIN_TEAM_REVIEW:
            fields["verified_by_admin_team"] = actor_id
            fields["verified_at"] = now
        if target in NOTES_REQUIRED:
            fields["admin_team_feedback"] = notes
        if target in COMPLIANCE_BY_STATUS:
            fields["compliance_status"] = COMPLIANCE_BY_STATUS[target]
        fields["metadata"] = self._with_history(doc, current, target, role, actor_id, notes, now)

        return await self._apply(doc, current, target, actor_id, notes, fields)

    async def resubmit(self, document: ComplianceDocument | str, actor_id: str) -> TransitionResult:
        """Send a revised document back to the admin team. Only its creator may do this."""
        doc = await self._load(document)
        current = doc.status

        if current != DocumentStatus.REVISION_REQUESTED:
            raise InvalidTransitionError(
                current.value, DocumentStatus.PENDING.value,
                "Only documents awaiting revision can be resubmitted",
            )
        if actor_id != doc.created_by:
            raise AuthorizationError(
                "Only the document creator can resubmit it",
                document_id=doc.id,
                actor_id=actor_id,
            )

        now = self._now()
        fields: dict[str, Any] = {
            "status": DocumentStatus.PENDING,
            "admin_team_feedback": None,
            "verified_by_admin_team": None,
            "verified_at": None,
            "metadata": self._with_history(doc, current, DocumentStatus.PENDING, None, actor_id, None, now),
        }
        return await self._apply(doc, current, DocumentStatus.PENDING, actor_id, None, fields)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    @staticmethod
    def _with_history(
        doc: ComplianceDocument,
        current: DocumentStatus,
        target: DocumentStatus,
        role: Optional[Role],
        actor_id: str,
        notes: Optional[str],
        at: datetime,
    ) -> dict[str, Any]:
        history = list(doc.metadata.get("approval_history", []))
        history.append({
            "from": current.value,
            "to": target.value,
            "actor_id": actor_id,
            "role": role.value if role else None,
            "notes": notes,
            "at": at.isoformat(),
        })
        return {**doc.metadata, "approval_history": history}

    async def _apply(
        self,
        doc: ComplianceDocument,
        current: DocumentStatus,
        target: DocumentStatus,
        actor_id: str,
        notes: Optional[str],
        fields: dict[str, Any],
    ) -> TransitionResult:
        updated = await self.cache.store.update_document(doc.id, fields, expected_status=current)
        self.cache.put_document(updated)
        log.info("Document %s: %s -> %s by %s", doc.id, current.value, target.value, actor_id)

        event = TransitionEvent(
            document=updated,
            from_status=current,
            to_status=target,
            actor_id=actor_id,
            notes=notes,
        )
        notification_id = None
        try:
            notification = await self.fanout.notify(event)
            notification_id = notification.id if notification else None
        except ComplianceError:
            log.exception(
                "Notification for document %s (%s -> %s) failed; status change kept",
                doc.id, current.value, target.value,
            )

        return TransitionResult(
            document_id=doc.id,
            action=ACTIONS[target],
            previous_status=current,
            new_status=target,
            actor_id=actor_id,
            notification_id=notification_id,
            document=updated,
        )

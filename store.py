"""Abstract store interface for the compliance engine.

The engine never talks to a database directly; the cache, workflow engine and
notification fan-out consume this interface.  Use get_store() to get the
configured implementation.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Any, Optional

from errors import ConfigurationError
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


class StoreClient(ABC):
    """Async read/write/query operations over the SLF collections.

    Implementations raise StoreError for any underlying failure.
    """

    # -- documents ----------------------------------------------------------

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[ComplianceDocument]:
        ...

    @abstractmethod
    async def update_document(
        self,
        document_id: str,
        fields: dict[str, Any],
        expected_status: Optional[DocumentStatus] = None,
    ) -> ComplianceDocument:
        """Apply ``fields`` to one document and return the updated document.

        With ``expected_status`` the write is conditional on the stored status
        in one atomic step; a mismatch raises InvalidTransitionError.
        Raises NotFoundError if the document does not exist.
        """
        ...

    # -- inspections & checklists -------------------------------------------

    @abstractmethod
    async def find_inspections(self, inspection_ids: list[str]) -> list[Inspection]:
        """Inspections by id in one query, joined with project and inspector metadata."""
        ...

    @abstractmethod
    async def find_inspection(self, inspection_id: str) -> Optional[Inspection]:
        ...

    @abstractmethod
    async def find_checklist_items(self, template_ids: list[str]) -> list[StoredChecklistItem]:
        """All items for the given templates in one query, ordered by sort_order."""
        ...

    @abstractmethod
    async def find_checklist_templates(self) -> list[StoredChecklistTemplate]:
        """All templates with their items embedded."""
        ...

    @abstractmethod
    async def find_responses(self, inspection_id: str) -> list[ChecklistResponseRow]:
        ...

    @abstractmethod
    async def find_photos(self, inspection_id: str) -> list[InspectionPhoto]:
        ...

    @abstractmethod
    async def insert_responses(self, rows: list[ChecklistResponseRow]) -> int:
        """Bulk insert, all-or-nothing. Returns the number of rows inserted."""
        ...

    @abstractmethod
    async def update_response(self, response_id: str, fields: dict[str, Any]) -> None:
        ...

    # -- team & notifications -----------------------------------------------

    @abstractmethod
    async def find_team_member(self, project_id: str, role: Role) -> Optional[TeamMember]:
        """First member of the project team holding ``role``, or None."""
        ...

    @abstractmethod
    async def insert_notification(self, notification: Notification) -> Notification:
        """Persist a notification and return it with its id set."""
        ...

    @abstractmethod
    async def mark_notification_read(self, notification_id: str) -> bool:
        """Flip ``read`` on one notification. Returns False if it does not exist."""
        ...


def get_store(store_name: str | None = None) -> StoreClient:
    """Factory: return the configured store.

    Args:
        store_name: 'mongo'. If None, reads SLF_STORE from env
                    (defaults to 'mongo').
    """
    name = store_name or os.getenv("SLF_STORE", "mongo")

    if name == "mongo":
        from db_writer import MongoStore
        return MongoStore()
    raise ConfigurationError(f"Unknown store: {name!r}. Use 'mongo'.")

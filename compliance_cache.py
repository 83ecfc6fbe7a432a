"""Compliance cache — TTL cache plus batched store access.

Hydrating an inspector dashboard naively costs one query per inspection and
one more per checklist.  ComplianceCache keeps recently fetched templates,
items, inspections and documents for five minutes and batches the rest:

  - batch_fetch_inspections_with_checklists: at most 2 queries per call,
    whatever the number of ids.
  - batch_save_checklist_responses: one bulk insert, all-or-nothing.
  - batch_update_checklist_responses: one update per row, run concurrently
    under a semaphore; failures are counted, never cancel siblings.

The cache is an explicit object with an injectable clock.  It is only touched
by the running coroutine between awaits, so it carries no lock.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from errors import ComplianceError, NotFoundError, StoreError, ValidationError
from schemas import (
    BatchResult,
    ChecklistResponseIn,
    ChecklistResponseRow,
    ComplianceDocument,
    InspectionWithChecklist,
    ResponseUpdate,
    StoredChecklistItem,
    StoredChecklistTemplate,
)
from store import StoreClient

load_dotenv()

log = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 5 * 60
UPDATE_CONCURRENCY = int(os.getenv("SLF_UPDATE_CONCURRENCY", "10"))

UNCATEGORIZED = "Uncategorized"


class CacheType(str, Enum):
    TEMPLATES = "templates"
    ITEMS = "items"
    INSPECTION_DATA = "inspection_data"
    DOCUMENTS = "documents"


@dataclass
class CacheEntry:
    value: Any
    stored_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0


def _validate_each(model, rows: Iterable[Any], what: str) -> list:
    """Validate every row, reporting all malformed rows in one ValidationError."""
    valid, problems = [], []
    for idx, row in enumerate(rows):
        try:
            valid.append(row if isinstance(row, model) else model.model_validate(row))
        except PydanticValidationError as e:
            for err in e.errors():
                problems.append({
                    "index": idx,
                    "field": ".".join(str(p) for p in err["loc"]),
                    "msg": err["msg"],
                })
    if problems:
        raise ValidationError(f"{len(problems)} invalid field(s) in {what}", errors=problems)
    return valid


class ComplianceCache:
    """TTL cache over a StoreClient with batched fetch/save/update helpers."""

    def __init__(
        self,
        store: StoreClient,
        clock: Callable[[], float] = time.monotonic,
        ttl: float = CACHE_TTL_SECONDS,
        update_concurrency: int = UPDATE_CONCURRENCY,
    ):
        self.store = store
        self._clock = clock
        self._ttl = ttl
        self._update_concurrency = max(1, update_concurrency)
        self._entries: dict[CacheType, dict[str, CacheEntry]] = {t: {} for t in CacheType}
        self._stats = CacheStats()

    # -----------------------------------------------------------------------
    # Keyed TTL map
    # -----------------------------------------------------------------------

    def get(self, cache_type: CacheType, key: str) -> Optional[Any]:
        """Cached value if still fresh; a stale entry is evicted and reads as a miss."""
        bucket = self._entries[CacheType(cache_type)]
        entry = bucket.get(key)
        if entry is not None and self._clock() - entry.stored_at < self._ttl:
            self._stats.hits += 1
            return entry.value
        if entry is not None:
            del bucket[key]
            self._stats.evictions += 1
        self._stats.misses += 1
        return None

    def set(self, cache_type: CacheType, key: str, value: Any) -> None:
        self._entries[CacheType(cache_type)][key] = CacheEntry(value=value, stored_at=self._clock())
        self._stats.sets += 1

    def clear_cache(self, cache_type: Optional[CacheType | str] = None) -> int:
        """Drop one entry type, or everything. Returns the number of entries removed."""
        types = [CacheType(cache_type)] if cache_type else list(CacheType)
        removed = 0
        for t in types:
            removed += len(self._entries[t])
            self._entries[t].clear()
        log.info("Cleared %d cache entries (%s)", removed, cache_type or "all")
        return removed

    def stats(self) -> dict[str, Any]:
        return {
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "sets": self._stats.sets,
            "evictions": self._stats.evictions,
            "entries": {t.value: len(bucket) for t, bucket in self._entries.items()},
            "ttl_seconds": self._ttl,
        }

    # -----------------------------------------------------------------------
    # Documents (read path for the workflow engine)
    # -----------------------------------------------------------------------

    async def get_document(self, document_id: str) -> ComplianceDocument:
        cached = self.get(CacheType.DOCUMENTS, document_id)
        if cached is not None:
            return cached
        return await self.refresh_document(document_id)

    async def refresh_document(self, document_id: str) -> ComplianceDocument:
        """Read a document from the store, skipping any cached copy, and re-cache it."""
        doc = await self.store.get_document(document_id)
        if doc is None:
            raise NotFoundError(f"Document {document_id} not found", document_id=document_id)
        self.set(CacheType.DOCUMENTS, document_id, doc)
        return doc

    def put_document(self, document: ComplianceDocument) -> None:
        self.set(CacheType.DOCUMENTS, document.id, document)

    # -----------------------------------------------------------------------
    # Inspections
    # -----------------------------------------------------------------------

    async def batch_fetch_inspections_with_checklists(
        self, inspection_ids: Iterable[str],
    ) -> list[InspectionWithChecklist]:
        """Inspections with their checklist items, in input order.

        Issues at most two store queries: one for all uncached inspections,
        one for the checklist items of every template they reference.
        Unknown ids are left out of the result.
        """
        ids = list(dict.fromkeys(i for i in inspection_ids if i))
        if not ids:
            return []

        found: dict[str, InspectionWithChecklist] = {}
        uncached: list[str] = []
        for inspection_id in ids:
            cached = self.get(CacheType.INSPECTION_DATA, inspection_id)
            if cached is not None:
                found[inspection_id] = cached
            else:
                uncached.append(inspection_id)

        if not uncached:
            log.debug("All %d inspections served from cache", len(ids))
            return [found[i] for i in ids]

        log.info("Fetching %d inspections (%d from cache)", len(uncached), len(found))
        inspections = await self.store.find_inspections(uncached)

        template_ids = list(dict.fromkeys(
            i.checklist_template_id for i in inspections if i.checklist_template_id
        ))
        items_by_template: dict[str, list[StoredChecklistItem]] = defaultdict(list)
        if template_ids:
            for item in await self.store.find_checklist_items(template_ids):
                items_by_template[item.template_id].append(item)

        for inspection in inspections:
            composite = InspectionWithChecklist(
                **inspection.model_dump(),
                checklist_items=items_by_template.get(inspection.checklist_template_id, []),
            )
            self.set(CacheType.INSPECTION_DATA, composite.id, composite)
            found[composite.id] = composite

        return [found[i] for i in ids if i in found]

    async def fetch_inspection_page_data(self, inspection_id: str) -> dict[str, Any]:
        """Everything the inspection page needs, fetched concurrently.

        Inspection, responses and photos load in parallel; checklist items
        follow once the template id is known.  A failed responses/photos
        fetch degrades to an empty list, a failed inspection fetch raises.
        """
        started = time.perf_counter()

        inspection, responses, photos = await asyncio.gather(
            self.store.find_inspection(inspection_id),
            self.store.find_responses(inspection_id),
            self.store.find_photos(inspection_id),
            return_exceptions=True,
        )
        if isinstance(inspection, BaseException):
            raise inspection
        if inspection is None:
            raise NotFoundError(f"Inspection {inspection_id} not found", inspection_id=inspection_id)
        if isinstance(responses, BaseException):
            log.warning("Responses fetch failed for inspection %s: %s", inspection_id, responses)
            responses = []
        if isinstance(photos, BaseException):
            log.warning("Photos fetch failed for inspection %s: %s", inspection_id, photos)
            photos = []

        checklist_items: list[StoredChecklistItem] = []
        if inspection.checklist_template_id:
            checklist_items = await self.store.find_checklist_items([inspection.checklist_template_id])

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        log.info("Inspection page data for %s fetched in %dms", inspection_id, elapsed_ms)
        return {
            "inspection": inspection,
            "checklist_items": checklist_items,
            "responses": responses,
            "photos": photos,
            "_meta": {"fetch_time_ms": elapsed_ms},
        }

    # -----------------------------------------------------------------------
    # Checklist templates & items
    # -----------------------------------------------------------------------

    async def prefetch_checklist_templates(self) -> list[StoredChecklistTemplate]:
        """Warm the template cache. A store failure is logged and yields []."""
        try:
            templates = await self.store.find_checklist_templates()
        except ComplianceError:
            log.exception("Checklist template prefetch failed")
            return []

        for template in templates:
            self.set(CacheType.TEMPLATES, template.id, template)
        log.info("Cached %d checklist templates", len(templates))
        return templates

    async def get_checklist_items_by_category(
        self, template_id: str,
    ) -> dict[str, list[StoredChecklistItem]]:
        cached = self.get(CacheType.ITEMS, template_id)
        if cached is not None:
            return cached

        grouped: dict[str, list[StoredChecklistItem]] = {}
        for item in await self.store.find_checklist_items([template_id]):
            grouped.setdefault(item.category or UNCATEGORIZED, []).append(item)

        self.set(CacheType.ITEMS, template_id, grouped)
        return grouped

    # -----------------------------------------------------------------------
    # Checklist responses
    # -----------------------------------------------------------------------

    async def batch_save_checklist_responses(self, responses: Iterable[Any]) -> BatchResult:
        """Validate and bulk-insert responses in a single store call.

        Raises ValidationError if any row lacks inspection_id,
        checklist_item_id or response, and StoreError if the insert fails.
        Nothing is inserted unless every row is valid.
        """
        valid = _validate_each(ChecklistResponseIn, list(responses), "checklist responses")
        if not valid:
            return BatchResult(success=True, count=0, total=0)

        now = datetime.now(timezone.utc)
        rows = [ChecklistResponseRow(**r.model_dump(), created_at=now) for r in valid]

        log.info("Batch saving %d checklist responses", len(rows))
        try:
            count = await self.store.insert_responses(rows)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Batch save of {len(rows)} responses failed: {e}", count=len(rows)) from e

        return BatchResult(success=True, count=count, total=len(rows))

    async def batch_update_checklist_responses(self, updates: Iterable[Any]) -> BatchResult:
        """Update each response concurrently and report how many succeeded.

        Every update runs to completion regardless of the others; a failed
        row shows up in ``failed_ids`` and makes ``success`` False.
        """
        valid = _validate_each(ResponseUpdate, list(updates), "response updates")
        if not valid:
            return BatchResult(success=True, count=0, total=0)

        log.info("Batch updating %d checklist responses", len(valid))
        sem = asyncio.Semaphore(self._update_concurrency)

        async def _update(update: ResponseUpdate) -> None:
            async with sem:
                await self.store.update_response(update.id, {"response": update.response})

        results = await asyncio.gather(*(_update(u) for u in valid), return_exceptions=True)

        failed_ids = []
        for update, result in zip(valid, results):
            if isinstance(result, BaseException):
                log.warning("Response %s update failed: %s", update.id, result)
                failed_ids.append(update.id)

        success_count = len(valid) - len(failed_ids)
        return BatchResult(
            success=success_count == len(valid),
            count=success_count,
            total=len(valid),
            failed_ids=failed_ids,
        )

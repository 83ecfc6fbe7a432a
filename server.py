#!/usr/bin/env python3
"""FastAPI server exposing the SLF checklist resolver, approval workflow and batched inspection access."""

import logging
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from checklist_catalog import get_catalog
from checklist_resolver import (
    INSPECTOR_SPECIALIZATIONS,
    flatten_checklist_items,
    get_checklist_item,
    get_checklist_template,
    get_checklists_by_specialization,
    get_items_for_inspector,
    get_photo_requirements,
    item_requires_photogeotag,
    normalize_specialization,
)
from compliance_cache import CacheType, ComplianceCache
from db import close_db, init_db
from errors import ComplianceError, ValidationError
from notification_fanout import NotificationFanout
from store import StoreClient, get_store
from workflow_engine import StatusWorkflowEngine, allowed_targets

load_dotenv()

log = logging.getLogger(__name__)

app = FastAPI(title="SLF Compliance API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Engine wiring
# ---------------------------------------------------------------------------

cache: ComplianceCache
fanout: NotificationFanout
engine: StatusWorkflowEngine


def configure(store: Optional[StoreClient] = None) -> None:
    """(Re)build the cache, fan-out and workflow engine over ``store``."""
    global cache, fanout, engine
    store = store or get_store()
    cache = ComplianceCache(store)
    fanout = NotificationFanout(store)
    engine = StatusWorkflowEngine(cache, fanout)


configure()


@app.on_event("startup")
async def startup():
    catalog = get_catalog()
    log.info("Checklist catalog ready (%d templates)", len(catalog))
    await init_db()
    await cache.prefetch_checklist_templates()


@app.on_event("shutdown")
async def shutdown():
    await close_db()


STATUS_BY_KIND = {
    "validation_error": 400,
    "authorization_error": 403,
    "not_found": 404,
    "invalid_transition": 409,
    "store_error": 502,
    "configuration_error": 500,
}


def _http_error(e: ComplianceError) -> HTTPException:
    return HTTPException(status_code=STATUS_BY_KIND.get(e.kind, 500), detail=e.to_dict())


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class TransitionRequest(BaseModel):
    actor_id: str = Field(min_length=1)
    actor_role: str
    target_status: str
    notes: Optional[str] = None


class ResubmitRequest(BaseModel):
    actor_id: str = Field(min_length=1)


class InspectionBatchRequest(BaseModel):
    ids: list[str]


class ResponseBatchRequest(BaseModel):
    responses: list[dict[str, Any]]


class ResponseUpdateBatchRequest(BaseModel):
    updates: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Checklist Endpoints
# ---------------------------------------------------------------------------

@app.get("/api/checklists")
async def list_checklists(
    specialization: Optional[str] = Query(None),
    building_type: str = Query("baru"),
):
    """Checklist templates applicable to an inspector specialization and building type."""
    try:
        templates = get_checklists_by_specialization(specialization, building_type)
    except ComplianceError as e:
        raise _http_error(e) from e

    return {
        "specialization": normalize_specialization(specialization).value,
        "building_type": building_type,
        "last_updated": get_catalog().last_updated,
        "templates": [t.model_dump(mode="json") for t in templates],
    }


@app.get("/api/checklists/specializations")
async def list_specializations():
    return INSPECTOR_SPECIALIZATIONS


@app.get("/api/checklists/{template_id}")
async def get_checklist(template_id: str, specialization: Optional[str] = Query(None)):
    """One template with its flattened items, filtered to a specialization when given."""
    try:
        template = get_checklist_template(template_id)
        if specialization:
            items = get_items_for_inspector(template_id, specialization)
        else:
            items = flatten_checklist_items([template])
    except ComplianceError as e:
        raise _http_error(e) from e

    return {
        "template": template.model_dump(mode="json", exclude={"items", "subsections"}),
        "items": [
            {
                **item.model_dump(mode="json"),
                "requires_geotag": item_requires_photogeotag(template_id, item.id, item.category),
            }
            for item in items
        ],
    }


@app.get("/api/checklists/{template_id}/items/{item_id}/photo-requirements")
async def get_item_photo_requirements(template_id: str, item_id: str):
    try:
        item = get_checklist_item(template_id, item_id)
        requires_geotag = item_requires_photogeotag(template_id, item_id, item.category)
        requirements = get_photo_requirements(template_id)
    except ComplianceError as e:
        raise _http_error(e) from e

    return {
        "template_id": template_id,
        "item_id": item_id,
        "requires_geotag": requires_geotag,
        "requirements": requirements.model_dump(mode="json"),
    }


# ---------------------------------------------------------------------------
# Document Workflow Endpoints
# ---------------------------------------------------------------------------

@app.post("/api/documents/{document_id}/transition")
async def transition_document(document_id: str, request: TransitionRequest):
    try:
        result = await engine.transition(
            document_id,
            actor_role=request.actor_role,
            actor_id=request.actor_id,
            target_status=request.target_status,
            notes=request.notes,
        )
    except ComplianceError as e:
        raise _http_error(e) from e
    return result.model_dump(mode="json")


@app.post("/api/documents/{document_id}/resubmit")
async def resubmit_document(document_id: str, request: ResubmitRequest):
    try:
        result = await engine.resubmit(document_id, actor_id=request.actor_id)
    except ComplianceError as e:
        raise _http_error(e) from e
    return result.model_dump(mode="json")


@app.get("/api/documents/{document_id}/transitions")
async def document_transitions(document_id: str):
    """Current status and the statuses reachable from it."""
    try:
        doc = await cache.get_document(document_id)
    except ComplianceError as e:
        raise _http_error(e) from e
    return {
        "document_id": doc.id,
        "status": doc.status.value,
        "allowed_targets": [s.value for s in allowed_targets(doc.status)],
    }


# ---------------------------------------------------------------------------
# Inspection & Response Endpoints
# ---------------------------------------------------------------------------

@app.post("/api/inspections/batch")
async def batch_inspections(request: InspectionBatchRequest):
    try:
        inspections = await cache.batch_fetch_inspections_with_checklists(request.ids)
    except ComplianceError as e:
        raise _http_error(e) from e
    return [i.model_dump(mode="json") for i in inspections]


@app.post("/api/responses/batch")
async def batch_save_responses(request: ResponseBatchRequest):
    try:
        result = await cache.batch_save_checklist_responses(request.responses)
    except ComplianceError as e:
        raise _http_error(e) from e
    return result.model_dump(mode="json")


@app.patch("/api/responses/batch")
async def batch_update_responses(request: ResponseUpdateBatchRequest):
    try:
        result = await cache.batch_update_checklist_responses(request.updates)
    except ComplianceError as e:
        raise _http_error(e) from e
    return result.model_dump(mode="json")


@app.delete("/api/cache")
async def clear_cache(type: Optional[str] = Query(None)):
    """Clear cached entries, optionally only one entry type."""
    if type is not None and type not in {t.value for t in CacheType}:
        raise _http_error(ValidationError(
            f"Unknown cache type '{type}'", allowed=[t.value for t in CacheType],
        ))
    cleared = cache.clear_cache(type)
    return {"cleared": cleared, "type": type or "all"}


# ---------------------------------------------------------------------------
# Notification Endpoints
# ---------------------------------------------------------------------------

@app.put("/api/notifications/{notification_id}/read")
async def mark_notification_read(notification_id: str):
    try:
        await fanout.mark_as_read(notification_id)
    except ComplianceError as e:
        raise _http_error(e) from e
    return {"id": notification_id, "read": True}


@app.get("/api/health")
async def health():
    catalog = get_catalog()
    return {
        "status": "ok",
        "catalog_last_updated": catalog.last_updated,
        "templates": len(catalog),
        "cache": cache.stats(),
    }


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

"""Photo geotag policy for inspection evidence.

Acquires a location from an async provider with a bounded wait, validates a
geotag against the catalog's photo validation rules, and builds the evidence
record persisted with each inspection photo.  When no GPS fix is available
the photo falls back to a manual location that a reviewer must approve.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from checklist_catalog import ChecklistCatalog, get_catalog
from checklist_resolver import get_checklist_item, get_checklist_template, item_requires_photogeotag
from errors import ValidationError
from schemas import Geotag, PhotoEvidence, VerificationMethod

log = logging.getLogger(__name__)

LocationProvider = Callable[[], Awaitable[Any]]


async def acquire_geotag(
    provider: LocationProvider,
    timeout: Optional[float] = None,
    catalog: Optional[ChecklistCatalog] = None,
) -> Optional[Geotag]:
    """Wait for a GPS fix from ``provider``.

    Returns None on timeout, provider failure or an unusable reading so the
    caller can switch to manual location entry.  ``timeout`` defaults to the
    configured no-GPS workflow timeout.
    """
    if timeout is None:
        catalog = catalog or get_catalog()
        timeout = catalog.validation_rules.photo_validation.no_gps_workflow.timeout_duration

    try:
        reading = await asyncio.wait_for(provider(), timeout=timeout)
    except asyncio.TimeoutError:
        log.warning("GPS fix not acquired within %.1fs, falling back to manual location", timeout)
        return None
    except Exception as e:
        log.warning("Location provider failed: %s", e)
        return None

    if reading is None:
        return None
    if isinstance(reading, Geotag):
        return reading
    try:
        return Geotag.model_validate(reading)
    except PydanticValidationError as e:
        log.warning("Discarding malformed location reading: %s", e)
        return None


def validate_geotag(
    geotag: Geotag | dict,
    now: Optional[datetime] = None,
    catalog: Optional[ChecklistCatalog] = None,
) -> list[str]:
    """Check a geotag against the configured rules. Returns a list of problems."""
    catalog = catalog or get_catalog()
    rule = catalog.validation_rules.photo_validation.geotag_validation
    data = geotag.model_dump() if isinstance(geotag, Geotag) else dict(geotag)

    problems = [
        f"missing {name}" for name in rule.required_fields if data.get(name) is None
    ]

    accuracy = data.get("accuracy")
    if accuracy is not None and accuracy > rule.accuracy_threshold:
        problems.append(
            f"accuracy {accuracy:.0f}m exceeds {rule.accuracy_threshold:.0f}m threshold"
        )

    ts = data.get("timestamp")
    if isinstance(ts, str):
        try:
            ts = datetime.fromisoformat(ts)
        except ValueError:
            problems.append("invalid timestamp")
            ts = None
    if isinstance(ts, datetime):
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        if now - ts > timedelta(hours=rule.timestamp_recency):
            problems.append(f"timestamp older than {rule.timestamp_recency:g}h")

    return problems


def build_photo_evidence(
    photo_url: str,
    file_name: str,
    template_id: str,
    item_id: str,
    geotag: Optional[Geotag] = None,
    location_description: Optional[str] = None,
    caption: Optional[str] = None,
    now: Optional[datetime] = None,
    catalog: Optional[ChecklistCatalog] = None,
) -> PhotoEvidence:
    """Build the evidence record for one checklist photo.

    With a geotag the photo is GPS-verified (flagged for review only if the
    geotag fails validation).  Without one, items that require a geotag go
    through the no-GPS policy: manual location, a description when required,
    and reviewer approval.

    Raises ValidationError when the policy forbids manual location or a
    required description is missing, and NotFoundError for unknown ids.
    """
    catalog = catalog or get_catalog()
    now = now or datetime.now(timezone.utc)

    template = get_checklist_template(template_id, catalog)
    item = get_checklist_item(template_id, item_id, catalog)
    item_name = item.item_name
    category = item.category or None
    description = (location_description or "").strip() or None

    if geotag is not None:
        problems = validate_geotag(geotag, now=now, catalog=catalog)
        if problems:
            log.warning("Geotag for %s/%s flagged for review: %s", template_id, item_id, "; ".join(problems))
        method = VerificationMethod.GPS_AUTOMATIC
        requires_review = bool(problems)
        location = f"{geotag.latitude:.6f}, {geotag.longitude:.6f}"
    elif not item_requires_photogeotag(template_id, item_id, category, catalog=catalog):
        method = VerificationMethod.MANUAL_INPUT
        requires_review = False
        location = description or "Tanpa lokasi"
    else:
        policy = catalog.photo_requirement(category or template.category).no_gps_handling
        if not policy.allow_manual_location:
            raise ValidationError(
                f"Photo for '{item_name}' requires a GPS geotag",
                template_id=template_id,
                item_id=item_id,
            )
        if policy.require_manual_location_description and not description:
            raise ValidationError(
                "Manual location description is required when GPS is unavailable",
                template_id=template_id,
                item_id=item_id,
            )
        method = VerificationMethod.MANUAL_INPUT
        requires_review = policy.require_alternative_verification
        location = description or "Tanpa lokasi (manual upload)"

    return PhotoEvidence(
        photo_url=photo_url,
        file_name=file_name,
        item_id=item_id,
        template_id=template_id,
        item_name=item_name,
        caption=caption or f"{item_name} - {location}",
        timestamp=now,
        latitude=geotag.latitude if geotag else None,
        longitude=geotag.longitude if geotag else None,
        accuracy=geotag.accuracy if geotag else None,
        has_geotag=geotag is not None,
        verification_method=method,
        requires_review=requires_review,
        location_description=description,
    )

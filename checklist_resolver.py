"""Checklist resolver — which SLF checklist templates and items apply to an inspector.

Given an inspector specialization and a building-type scenario, selects the
applicable templates from the checklist catalog, filters the items of the
merged "general" template per specialization, flattens templates into the
ordered item list the inspection form and report numbering rely on, and
decides whether an item needs geotagged photo evidence.

Every function takes an optional ``catalog``; when omitted the process-wide
default catalog is used.  Nothing here touches the store.

At template level a template matches a profile by category, by explicit
template id, or by a keyword found in its title/description/category.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Optional

from checklist_catalog import ChecklistCatalog, get_catalog
from errors import NotFoundError, ValidationError
from schemas import (
    BuildingType,
    ChecklistCategory,
    ChecklistItem,
    ChecklistTemplate,
    EffectivePhotoRequirement,
    FlattenedChecklistItem,
    Specialization,
)

log = logging.getLogger(__name__)

GENERAL_TEMPLATE_ID = "general"

STRUCTURAL_SECTION = "m21"
DISASTER_SECTION = "m210"
PASSIVE_FIRE_SECTION = "m23"


# ---------------------------------------------------------------------------
# Specialization profiles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SpecializationProfile:
    name: Specialization
    description: str
    categories: frozenset[ChecklistCategory] = frozenset()
    template_ids: frozenset[str] = frozenset()
    keywords: tuple[str, ...] = ()
    matches_all: bool = False


SPECIALIZATION_PROFILES: dict[Specialization, SpecializationProfile] = {
    Specialization.STRUKTUR: SpecializationProfile(
        name=Specialization.STRUKTUR,
        description="Sistem struktur bangunan dan mitigasi bencana",
        template_ids=frozenset({STRUCTURAL_SECTION, DISASTER_SECTION}),
        keywords=("pondasi", "kolom", "balok", "beton", "baja", "gempa", "bencana"),
    ),
    Specialization.ARSITEKTUR: SpecializationProfile(
        name=Specialization.ARSITEKTUR,
        description="Tata bangunan, arsitektur dan kenyamanan pengguna",
        categories=frozenset({ChecklistCategory.TATA_BANGUNAN, ChecklistCategory.KESELAMATAN}),
        template_ids=frozenset({"m11", "m12", "m13", "m14", "m31", "m32", "m33"}),
        keywords=(
            "arsitektur", "tata_bangunan", "peruntukan", "intensitas",
            "keselamatan", "kenyamanan", "aksesibilitas",
        ),
    ),
    Specialization.MEP: SpecializationProfile(
        name=Specialization.MEP,
        description="Mekanikal, elektrikal dan plumbing",
        template_ids=frozenset({"m22", "m23", "m24", "m25", "m26", "m27", "m28", "m29"}),
        keywords=(
            "mekanikal", "elektrikal", "plumbing", "listrik", "sanitasi",
            "lift", "kebakaran", "penghawaan", "pencahayaan",
        ),
    ),
    Specialization.BUILDING_INSPECTION: SpecializationProfile(
        name=Specialization.BUILDING_INSPECTION,
        description="Pemeriksaan umum seluruh aspek bangunan",
        matches_all=True,
    ),
}

# Specialization names still stored on older profiles.
LEGACY_SPECIALIZATIONS: dict[str, Specialization] = {
    "structural_engineering": Specialization.STRUKTUR,
    "architectural_design": Specialization.ARSITEKTUR,
    "environmental_health": Specialization.ARSITEKTUR,
    "mep_engineering": Specialization.MEP,
    "electrical_systems": Specialization.MEP,
    "mechanical_systems": Specialization.MEP,
    "plumbing_systems": Specialization.MEP,
    "fire_safety": Specialization.MEP,
    "mekanikal": Specialization.MEP,
    "elektrikal": Specialization.MEP,
}

INSPECTOR_SPECIALIZATIONS: list[dict[str, str]] = [
    {
        "value": Specialization.STRUKTUR.value,
        "label": "Struktur",
        "description": "Inspeksi sistem struktur: pondasi, kolom, balok, pelat, dan mitigasi bencana",
    },
    {
        "value": Specialization.ARSITEKTUR.value,
        "label": "Arsitektur",
        "description": "Inspeksi tata bangunan, keselamatan pengguna, kenyamanan, dan aksesibilitas",
    },
    {
        "value": Specialization.MEP.value,
        "label": "MEP (Mekanikal, Elektrikal, Plumbing)",
        "description": "Inspeksi proteksi kebakaran aktif, pencahayaan, penghawaan, sanitasi, lift, listrik, dan komunikasi",
    },
    {
        "value": Specialization.BUILDING_INSPECTION.value,
        "label": "Building Inspection (Supervisor)",
        "description": "Pemeriksaan menyeluruh semua aspek checklist",
    },
]


def normalize_specialization(value: Any) -> Specialization:
    """Map a raw specialization (canonical, legacy alias, or None) to a canonical one.

    Unknown or absent values fall back to the supervisor profile, which sees
    every checklist.
    """
    if isinstance(value, Specialization):
        return value
    key = str(value or "").strip().lower()
    if not key:
        return Specialization.BUILDING_INSPECTION
    try:
        return Specialization(key)
    except ValueError:
        pass
    if key in LEGACY_SPECIALIZATIONS:
        return LEGACY_SPECIALIZATIONS[key]
    log.debug("Unknown specialization %r, using building_inspection profile", value)
    return Specialization.BUILDING_INSPECTION


def get_specialization_profile(value: Any) -> SpecializationProfile:
    return SPECIALIZATION_PROFILES[normalize_specialization(value)]


def _coerce_building_type(value: Any) -> BuildingType:
    if isinstance(value, BuildingType):
        return value
    if value is None:
        return BuildingType.BARU
    try:
        return BuildingType(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown building type '{value}'",
            allowed=[b.value for b in BuildingType],
        ) from None


# ---------------------------------------------------------------------------
# Template selection
# ---------------------------------------------------------------------------

def _matches_profile(template: ChecklistTemplate, profile: SpecializationProfile) -> bool:
    if profile.matches_all:
        return True
    if template.category in profile.categories:
        return True
    if template.id in profile.template_ids:
        return True
    haystack = " ".join((
        template.title,
        template.description,
        template.category.value if template.category else "",
    )).lower()
    return any(kw in haystack for kw in profile.keywords)


def _matches_building_type(template: ChecklistTemplate, building_type: BuildingType) -> bool:
    if building_type == BuildingType.ALL:
        return True
    if not template.applicable_for:
        return True
    return building_type in template.applicable_for or BuildingType.ALL in template.applicable_for


def get_checklists_by_specialization(
    specialization: Any = None,
    building_type: Any = BuildingType.BARU,
    catalog: Optional[ChecklistCatalog] = None,
) -> list[ChecklistTemplate]:
    """Templates applicable to an inspector, in catalog order.

    Administrative templates are only returned to the supervisor profile.
    Raises ValidationError for a building type outside the known scenarios.
    """
    catalog = catalog or get_catalog()
    profile = get_specialization_profile(specialization)
    bt = _coerce_building_type(building_type)

    result = []
    for template in catalog.templates:
        if template.category == ChecklistCategory.ADMINISTRATIVE and not profile.matches_all:
            continue
        if _matches_profile(template, profile) and _matches_building_type(template, bt):
            result.append(template)

    log.debug(
        "Resolved %d checklist templates for %s/%s",
        len(result), profile.name.value, bt.value,
    )
    return result


# ---------------------------------------------------------------------------
# Item-level filtering (merged "general" template)
# ---------------------------------------------------------------------------

def is_item_matching_specialization(item: Any, specialization: Any) -> bool:
    """Whether one item of the merged "general" template belongs to an inspector.

    ``item`` is anything with ``category`` and ``section_id`` attributes
    (a FlattenedChecklistItem or a ChecklistItem from the merged template).
    """
    category = getattr(item, "category", None)
    section_id = getattr(item, "section_id", None) or ""

    if category == ChecklistCategory.ADMINISTRATIVE:
        return False

    spec = normalize_specialization(specialization)

    if spec == Specialization.ARSITEKTUR:
        return (
            category in (ChecklistCategory.TATA_BANGUNAN, ChecklistCategory.KESELAMATAN)
            or section_id.startswith(("m1", "m3"))
            or section_id == PASSIVE_FIRE_SECTION
        )

    if spec == Specialization.STRUKTUR:
        return section_id in (STRUCTURAL_SECTION, DISASTER_SECTION)

    if spec == Specialization.MEP:
        return (
            category == ChecklistCategory.KEANDALAN
            and section_id not in (STRUCTURAL_SECTION, DISASTER_SECTION, PASSIVE_FIRE_SECTION)
        )

    # Supervisor and unrecognized specializations see everything.
    return True


# ---------------------------------------------------------------------------
# Template / item lookup
# ---------------------------------------------------------------------------

@lru_cache(maxsize=8)
def _general_template(catalog: ChecklistCatalog) -> ChecklistTemplate:
    merged: list[ChecklistItem] = []
    for template in catalog.technical_templates():
        for item in template.items:
            merged.append(item.model_copy(update={
                "category": item.category or template.category,
                "section_id": template.id,
            }))
    return ChecklistTemplate(
        id=GENERAL_TEMPLATE_ID,
        title="Pemeriksaan Umum (General)",
        description="Gabungan semua item checklist teknis",
        category=None,
        items=tuple(merged),
    )


def get_checklist_template(
    template_id: str,
    catalog: Optional[ChecklistCatalog] = None,
) -> ChecklistTemplate:
    """Template by id, or the synthetic "general" template merging all technical items."""
    catalog = catalog or get_catalog()
    template = catalog.get(template_id)
    if template is not None:
        return template
    if template_id == GENERAL_TEMPLATE_ID:
        return _general_template(catalog)
    raise NotFoundError(f"Checklist template '{template_id}' not found", template_id=template_id)


def get_checklist_item(
    template_id: str,
    item_id: str,
    catalog: Optional[ChecklistCatalog] = None,
) -> ChecklistItem:
    template = get_checklist_template(template_id, catalog)
    for item in template.iter_items():
        if item.id == item_id:
            return item
    raise NotFoundError(
        f"Checklist item '{item_id}' not found in template '{template_id}'",
        template_id=template_id,
        item_id=item_id,
    )


# ---------------------------------------------------------------------------
# Flattening
# ---------------------------------------------------------------------------

def _flatten_item(
    item: ChecklistItem,
    template: ChecklistTemplate,
    subsection_title: Optional[str],
    applicable_for: Iterable[BuildingType],
) -> FlattenedChecklistItem:
    return FlattenedChecklistItem(
        id=item.id,
        item_name=item.item_name,
        columns=item.columns,
        wajib=item.wajib,
        category=item.category or template.category or ChecklistCategory.ADMINISTRATIVE,
        template_id=template.id,
        template_title=template.title,
        section_id=item.section_id or template.id,
        section_title=template.title,
        subsection_title=subsection_title,
        applicable_for=tuple(applicable_for),
    )


def flatten_checklist_items(templates: Iterable[ChecklistTemplate]) -> list[FlattenedChecklistItem]:
    """Flatten templates into one ordered item list.

    Order is template order, then subsection order, then item order.  Report
    numbering and form pagination depend on it, so nothing here sorts.
    """
    flattened: list[FlattenedChecklistItem] = []
    for template in templates:
        if template.subsections:
            for sub in template.subsections:
                applicable = sub.applicable_for or template.applicable_for or ()
                for item in sub.items:
                    flattened.append(_flatten_item(item, template, sub.title, applicable))
        else:
            for item in template.items:
                flattened.append(_flatten_item(item, template, None, template.applicable_for or ()))
    return flattened


def get_items_for_inspector(
    template_id: str,
    specialization: Any = None,
    catalog: Optional[ChecklistCatalog] = None,
) -> list[FlattenedChecklistItem]:
    """Flattened items of a template filtered to one inspector's specialization."""
    template = get_checklist_template(template_id, catalog)
    items = flatten_checklist_items([template])
    return [i for i in items if is_item_matching_specialization(i, specialization)]


# ---------------------------------------------------------------------------
# Photo / geotag requirements
# ---------------------------------------------------------------------------

def _template_category(
    template_id: str,
    item_id: Optional[str],
    catalog: ChecklistCatalog,
) -> Optional[ChecklistCategory]:
    template = catalog.get(template_id)
    if template is not None:
        return template.category
    if template_id == GENERAL_TEMPLATE_ID and item_id:
        for item in _general_template(catalog).items:
            if item.id == item_id:
                return item.category
    return None


def _geotag_default(category: ChecklistCategory | str) -> bool:
    return str(getattr(category, "value", category)) != ChecklistCategory.ADMINISTRATIVE.value


def item_requires_photogeotag(
    template_id: str,
    item_id: Optional[str] = None,
    explicit_category: Optional[ChecklistCategory | str] = None,
    catalog: Optional[ChecklistCatalog] = None,
) -> bool:
    """Whether photos for this item must carry a GPS geotag.

    Category precedence: ``explicit_category`` > the template's category > default.
    A category with a per-category override uses its ``require_geotag``;
    otherwise everything but administrative requires a geotag.  An unknown
    template requires one.
    """
    catalog = catalog or get_catalog()

    category = explicit_category or _template_category(template_id, item_id, catalog)
    if category is None:
        log.warning(
            "No category for checklist %s/%s, requiring geotag", template_id, item_id,
        )
        return True

    override = catalog.category_requires_geotag(category)
    if override is not None:
        return override
    return _geotag_default(category)


def get_photo_requirements(
    template_id: str,
    catalog: Optional[ChecklistCatalog] = None,
) -> EffectivePhotoRequirement:
    """Photo rule for a template: global rule merged with its category override."""
    catalog = catalog or get_catalog()
    template = catalog.get(template_id)
    if template is None:
        return catalog.photo_requirement()
    return catalog.photo_requirement(template.category)

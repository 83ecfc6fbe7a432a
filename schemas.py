"""Pydantic models for the SLF compliance engine — checklist catalog, workflow, cache and geotag schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, computed_field, model_validator


# =============================================================================
# Enums
# =============================================================================

class Role(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN_LEAD = "admin_lead"
    ADMIN_TEAM = "admin_team"
    PROJECT_LEAD = "project_lead"
    INSPECTOR = "inspector"
    CLIENT = "client"
    DRAFTER = "drafter"
    HEAD_CONSULTANT = "head_consultant"


class Specialization(str, Enum):
    STRUKTUR = "struktur"
    ARSITEKTUR = "arsitektur"
    MEP = "mep"
    BUILDING_INSPECTION = "building_inspection"


class ChecklistCategory(str, Enum):
    ADMINISTRATIVE = "administrative"
    TATA_BANGUNAN = "tata_bangunan"
    KEANDALAN = "keandalan"
    KESELAMATAN = "keselamatan"


class BuildingType(str, Enum):
    BARU = "baru"
    EXISTING = "existing"
    PERUBAHAN_FUNGSI = "perubahan_fungsi"
    PASCABENCANA = "pascabencana"
    PERPANJANGAN_SLF = "perpanjangan_slf"
    ALL = "all"


class ColumnType(str, Enum):
    RADIO = "radio"
    RADIO_WITH_TEXT = "radio_with_text"
    TEXTAREA = "textarea"
    INPUT_NUMBER = "input_number"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    VERIFIED_BY_ADMIN_TEAM = "verified_by_admin_team"
    APPROVED_BY_PL = "approved_by_pl"
    APPROVED_BY_ADMIN_LEAD = "approved_by_admin_lead"
    APPROVED = "approved"
    REVISION_REQUESTED = "revision_requested"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    DocumentStatus.APPROVED,
    DocumentStatus.REJECTED,
    DocumentStatus.CANCELLED,
})


class ComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"
    UNSET = "unset"


class VerificationMethod(str, Enum):
    GPS_AUTOMATIC = "gps_automatic"
    MANUAL_INPUT = "manual_input"


REPORT_DOCUMENT_TYPE = "REPORT"


# =============================================================================
# Checklist Catalog (loaded once from configuration, immutable)
# =============================================================================

_CATALOG_CONFIG = {"frozen": True, "extra": "forbid"}


class ChecklistColumn(BaseModel):
    """Single typed input field rendered for a checklist item."""
    model_config = _CATALOG_CONFIG

    name: str
    type: ColumnType
    options: Tuple[str, ...] = ()
    text_label: Optional[str] = None
    label: Optional[str] = None
    unit: Optional[str] = None


class ChecklistItem(BaseModel):
    model_config = _CATALOG_CONFIG

    id: str = Field(min_length=1)
    item_name: str
    columns: Tuple[ChecklistColumn, ...] = ()
    category: Optional[ChecklistCategory] = Field(
        default=None, description="Overrides the template category when set",
    )
    section_id: Optional[str] = Field(
        default=None, description="Originating template id (set on merged templates)",
    )
    wajib: bool = Field(default=True, description="Mandatory item")


class ChecklistSubsection(BaseModel):
    model_config = _CATALOG_CONFIG

    id: str
    title: str
    applicable_for: Optional[Tuple[BuildingType, ...]] = None
    items: Tuple[ChecklistItem, ...] = ()


class ChecklistTemplate(BaseModel):
    """Named group of inspection items tied to a category and building-type scenarios.

    Holds either a flat ``items`` list or nested ``subsections``.  ``category``
    is only ``None`` on the synthetic merged "general" template, where every
    item carries its own category.
    """
    model_config = _CATALOG_CONFIG

    id: str = Field(min_length=1)
    title: str
    description: str = ""
    category: Optional[ChecklistCategory] = None
    applicable_for: Optional[Tuple[BuildingType, ...]] = None
    items: Tuple[ChecklistItem, ...] = ()
    subsections: Tuple[ChecklistSubsection, ...] = ()

    @model_validator(mode="after")
    def _check_items(self):
        if not self.items and not self.subsections:
            raise ValueError(f"template '{self.id}' has neither items nor subsections")
        if self.items and self.subsections:
            raise ValueError(f"template '{self.id}' declares both items and subsections")
        seen: set[str] = set()
        for item in self.iter_items():
            if item.id in seen:
                raise ValueError(f"template '{self.id}' has duplicate item id '{item.id}'")
            seen.add(item.id)
        return self

    def iter_items(self):
        yield from self.items
        for sub in self.subsections:
            yield from sub.items


class FlattenedChecklistItem(BaseModel):
    """Checklist item tagged with its originating template and subsection."""
    model_config = {"frozen": True}

    id: str
    item_name: str
    columns: Tuple[ChecklistColumn, ...] = ()
    wajib: bool = True
    category: ChecklistCategory
    template_id: str
    template_title: str
    section_id: str
    section_title: str
    subsection_title: Optional[str] = None
    applicable_for: Tuple[BuildingType, ...] = ()


class CategoryPhotoRequirement(BaseModel):
    model_config = _CATALOG_CONFIG

    require_geotag: bool = True
    min_photos: int = Field(default=0, ge=0)
    max_photos: int = Field(default=10, ge=0)
    required_shots: Tuple[str, ...] = ()
    recommended_subjects: Tuple[str, ...] = ()

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_photos > self.max_photos:
            raise ValueError("min_photos cannot exceed max_photos")
        return self


class NoGpsHandling(BaseModel):
    """Escalation policy when no GPS signal is available."""
    model_config = _CATALOG_CONFIG

    allow_manual_location: bool = True
    require_manual_location_description: bool = True
    require_alternative_verification: bool = True
    alternative_verification_methods: Tuple[str, ...] = ()


class GlobalPhotoRequirement(BaseModel):
    model_config = _CATALOG_CONFIG

    require_geotag: bool = True
    geotag_exceptions: Tuple[ChecklistCategory, ...] = ()
    no_gps_handling: NoGpsHandling = Field(default_factory=NoGpsHandling)


class PhotoRequirements(BaseModel):
    model_config = {**_CATALOG_CONFIG, "populate_by_name": True}

    global_: GlobalPhotoRequirement = Field(alias="global", default_factory=GlobalPhotoRequirement)
    per_category: Dict[ChecklistCategory, CategoryPhotoRequirement] = Field(default_factory=dict)


class EffectivePhotoRequirement(BaseModel):
    """Global photo rule merged with one category's override."""
    model_config = {"frozen": True}

    category: Optional[ChecklistCategory] = None
    require_geotag: bool = True
    min_photos: int = 0
    max_photos: Optional[int] = None
    required_shots: Tuple[str, ...] = ()
    recommended_subjects: Tuple[str, ...] = ()
    no_gps_handling: NoGpsHandling = Field(default_factory=NoGpsHandling)


class GeotagValidationRule(BaseModel):
    model_config = _CATALOG_CONFIG

    required_fields: Tuple[str, ...] = ("latitude", "longitude", "accuracy", "timestamp")
    accuracy_threshold: float = Field(default=50.0, gt=0, description="Metres")
    timestamp_recency: float = Field(default=24.0, gt=0, description="Hours")


class NoGpsWorkflow(BaseModel):
    model_config = _CATALOG_CONFIG

    steps: Tuple[str, ...] = ()
    timeout_duration: float = Field(default=30.0, gt=0, description="Seconds")
    retry_attempts: int = Field(default=3, ge=0)


class PhotoValidation(BaseModel):
    model_config = _CATALOG_CONFIG

    geotag_validation: GeotagValidationRule = Field(default_factory=GeotagValidationRule)
    no_gps_workflow: NoGpsWorkflow = Field(default_factory=NoGpsWorkflow)


class ValidationRules(BaseModel):
    model_config = _CATALOG_CONFIG

    photo_validation: PhotoValidation = Field(default_factory=PhotoValidation)


class CatalogMetadata(BaseModel):
    model_config = _CATALOG_CONFIG

    last_updated: str = Field(min_length=1)
    version: Optional[str] = None
    description: str = ""
    source_regulations: Tuple[str, ...] = ()


class ChecklistConfig(BaseModel):
    """Top-level versioned checklist configuration document."""
    model_config = _CATALOG_CONFIG

    metadata: CatalogMetadata
    checklist_templates: Tuple[ChecklistTemplate, ...]
    photo_requirements: PhotoRequirements = Field(default_factory=PhotoRequirements)
    validation_rules: ValidationRules = Field(default_factory=ValidationRules)

    @model_validator(mode="after")
    def _check_unique_ids(self):
        ids = [t.id for t in self.checklist_templates]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicate template ids: {', '.join(dupes)}")
        return self


# =============================================================================
# Workflow Models
# =============================================================================

class ComplianceDocument(BaseModel):
    """Uploaded compliance artifact or inspection report moving through approval."""
    id: str
    project_id: str
    name: str = ""
    document_type: str = Field(description="Required artifact code or 'REPORT'")
    status: DocumentStatus = DocumentStatus.PENDING
    compliance_status: ComplianceStatus = ComplianceStatus.UNSET
    created_by: str
    verified_by_admin_team: Optional[str] = None
    verified_at: Optional[datetime] = None
    admin_team_feedback: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_report(self) -> bool:
        return self.document_type == REPORT_DOCUMENT_TYPE


class Profile(BaseModel):
    id: str
    role: Role
    specialization: Optional[Specialization] = None


class TransitionEvent(BaseModel):
    document: ComplianceDocument
    from_status: DocumentStatus
    to_status: DocumentStatus
    actor_id: str
    notes: Optional[str] = None


class TransitionResult(BaseModel):
    document_id: str
    action: str
    previous_status: DocumentStatus
    new_status: DocumentStatus
    actor_id: str
    notification_id: Optional[str] = None
    document: ComplianceDocument


class Notification(BaseModel):
    id: Optional[str] = None
    recipient_id: str
    type: str
    message: str
    sender_id: Optional[str] = None
    project_id: Optional[str] = None
    read: bool = False
    created_at: Optional[datetime] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class TeamMember(BaseModel):
    project_id: str
    user_id: str
    role: Role


# =============================================================================
# Inspection / Cache Models
# =============================================================================

class InspectionProject(BaseModel):
    id: str
    name: str = ""
    address: Optional[str] = None
    city: Optional[str] = None


class InspectorInfo(BaseModel):
    id: str
    full_name: str = ""
    email: Optional[str] = None


class StoredChecklistItem(BaseModel):
    """Row of the ``checklist_items`` table."""
    id: str
    template_id: str
    item_name: str = ""
    category: Optional[str] = None
    sort_order: int = 0
    is_mandatory: bool = True


class StoredChecklistTemplate(BaseModel):
    """Row of the ``checklist_templates`` table, optionally with its items."""
    id: str
    name: str = ""
    category: Optional[str] = None
    description: str = ""
    applicable_for: List[str] = Field(default_factory=list)
    checklist_items: List[StoredChecklistItem] = Field(default_factory=list)


class Inspection(BaseModel):
    id: str
    project_id: str
    checklist_template_id: Optional[str] = None
    assigned_to: Optional[str] = None
    status: str = "scheduled"
    scheduled_date: Optional[datetime] = None
    project: Optional[InspectionProject] = None
    inspector: Optional[InspectorInfo] = None


class InspectionWithChecklist(Inspection):
    checklist_items: List[StoredChecklistItem] = Field(default_factory=list)


class Geotag(BaseModel):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    accuracy: Optional[float] = Field(default=None, ge=0.0, description="Metres")
    timestamp: Optional[datetime] = None


class ChecklistResponseIn(BaseModel):
    """Inbound checklist response prior to bulk insert."""
    inspection_id: str = Field(min_length=1)
    checklist_item_id: str = Field(min_length=1)
    response: Dict[str, Any]
    sample_number: Optional[int] = None
    geotag: Optional[Geotag] = None


class ChecklistResponseRow(ChecklistResponseIn):
    id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class ResponseUpdate(BaseModel):
    id: str = Field(min_length=1)
    response: Dict[str, Any]


class BatchResult(BaseModel):
    """Outcome of a batch write.

    ``success`` is False on partial failure; ``count`` is how many rows
    actually landed.
    """
    success: bool
    count: int
    total: int = 0
    failed_ids: List[str] = Field(default_factory=list)

    @computed_field
    @property
    def partial_failure(self) -> bool:
        return 0 < self.count < self.total


class InspectionPhoto(BaseModel):
    id: str
    inspection_id: str
    checklist_item_id: Optional[str] = None
    photo_url: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    verification_method: VerificationMethod = VerificationMethod.GPS_AUTOMATIC
    requires_review: bool = False


class PhotoEvidence(BaseModel):
    """Photo record ready to persist, with its location provenance."""
    photo_url: str
    file_name: str
    item_id: str
    template_id: str
    item_name: str
    caption: str
    timestamp: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    has_geotag: bool
    verification_method: VerificationMethod
    requires_review: bool
    location_description: Optional[str] = None

"""Checklist catalog — validated, immutable in-memory checklist configuration.

Loads the versioned SLF checklist JSON (templates, photo requirements and
photo validation rules) once, validates it with pydantic, and exposes
read-only lookup tables.  A malformed document (unknown category, unknown
building type, duplicate template ids, missing items) fails at load time with
ConfigurationError instead of surfacing per request.

Default path: data/slf_checklist_templates.json, overridable with the
SLF_CHECKLIST_CONFIG environment variable.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from errors import ConfigurationError
from schemas import (
    ChecklistCategory,
    ChecklistConfig,
    ChecklistTemplate,
    EffectivePhotoRequirement,
    ValidationRules,
)

load_dotenv()

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "data" / "slf_checklist_templates.json"


class ChecklistCatalog:
    """Read-only view over one validated ChecklistConfig."""

    def __init__(self, config: ChecklistConfig):
        self._config = config
        self._templates: tuple[ChecklistTemplate, ...] = config.checklist_templates
        self._by_id: Mapping[str, ChecklistTemplate] = MappingProxyType(
            {t.id: t for t in self._templates}
        )

    # -----------------------------------------------------------------------
    # Construction
    # -----------------------------------------------------------------------

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ChecklistCatalog":
        try:
            config = ChecklistConfig.model_validate(raw)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid checklist configuration: {e.error_count()} error(s)",
                errors=[
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ],
            ) from e
        return cls(config)

    @classmethod
    def from_file(cls, path: str | Path) -> "ChecklistCatalog":
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigurationError(f"Checklist configuration not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Checklist configuration is not valid JSON: {path}: {e}") from e

        catalog = cls.from_dict(raw)
        log.info(
            "Loaded checklist catalog %s (last_updated=%s, %d templates)",
            path.name,
            catalog.last_updated,
            len(catalog.templates),
        )
        return catalog

    # -----------------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------------

    @property
    def config(self) -> ChecklistConfig:
        return self._config

    @property
    def last_updated(self) -> str:
        return self._config.metadata.last_updated

    @property
    def templates(self) -> tuple[ChecklistTemplate, ...]:
        """All templates in configuration order."""
        return self._templates

    @property
    def validation_rules(self) -> ValidationRules:
        return self._config.validation_rules

    def get(self, template_id: str) -> Optional[ChecklistTemplate]:
        return self._by_id.get(template_id)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._by_id

    def __len__(self) -> int:
        return len(self._templates)

    def technical_templates(self) -> tuple[ChecklistTemplate, ...]:
        """Technical inspection templates (ids starting with 'm'), in order."""
        return tuple(t for t in self._templates if t.id.startswith("m"))

    def category_requires_geotag(self, category: ChecklistCategory | str) -> Optional[bool]:
        """Per-category require_geotag override, or None when the category has none."""
        try:
            category = ChecklistCategory(category)
        except ValueError:
            return None
        rule = self._config.photo_requirements.per_category.get(category)
        return None if rule is None else rule.require_geotag

    def photo_requirement(self, category: Optional[ChecklistCategory] = None) -> EffectivePhotoRequirement:
        """Global photo rule, merged with the category override when one exists."""
        global_rule = self._config.photo_requirements.global_
        if category is None:
            return EffectivePhotoRequirement(
                require_geotag=global_rule.require_geotag,
                no_gps_handling=global_rule.no_gps_handling,
            )

        override = self._config.photo_requirements.per_category.get(category)
        if override is None:
            return EffectivePhotoRequirement(
                category=category,
                require_geotag=(
                    global_rule.require_geotag
                    and category not in global_rule.geotag_exceptions
                ),
                no_gps_handling=global_rule.no_gps_handling,
            )

        return EffectivePhotoRequirement(
            category=category,
            require_geotag=override.require_geotag,
            min_photos=override.min_photos,
            max_photos=override.max_photos,
            required_shots=override.required_shots,
            recommended_subjects=override.recommended_subjects,
            no_gps_handling=global_rule.no_gps_handling,
        )


# ---------------------------------------------------------------------------
# Process-wide default catalog
# ---------------------------------------------------------------------------

_default_catalog: Optional[ChecklistCatalog] = None


def get_catalog() -> ChecklistCatalog:
    """Return the default catalog, loading it on first use."""
    global _default_catalog
    if _default_catalog is None:
        path = os.getenv("SLF_CHECKLIST_CONFIG") or DEFAULT_CONFIG_PATH
        _default_catalog = ChecklistCatalog.from_file(path)
    return _default_catalog


def reset_catalog() -> None:
    """Drop the default catalog so the next get_catalog() reloads it."""
    global _default_catalog
    _default_catalog = None

"""Tests for checklist_resolver — specialization/building-type resolution and item rules."""

from __future__ import annotations

import pytest

from checklist_catalog import ChecklistCatalog
from checklist_resolver import (
    GENERAL_TEMPLATE_ID,
    INSPECTOR_SPECIALIZATIONS,
    flatten_checklist_items,
    get_checklist_item,
    get_checklist_template,
    get_checklists_by_specialization,
    get_items_for_inspector,
    get_photo_requirements,
    is_item_matching_specialization,
    item_requires_photogeotag,
    normalize_specialization,
)
from errors import NotFoundError, ValidationError
from schemas import BuildingType, ChecklistCategory, Specialization


def ids(templates) -> list[str]:
    return [t.id for t in templates]


# =========================================================================
# Template selection
# =========================================================================


class TestChecklistsBySpecialization:
    def test_struktur_baru_returns_structural_and_disaster_templates(self, catalog):
        result = get_checklists_by_specialization("struktur", "baru", catalog=catalog)
        assert ids(result) == ["m21", "m210"]

    def test_arsitektur_existing(self, catalog):
        result = get_checklists_by_specialization("arsitektur", BuildingType.EXISTING, catalog=catalog)
        assert ids(result) == ["m12", "m13", "m14", "m31", "m32", "m33"]

    def test_arsitektur_existing_drops_new_building_only_templates(self, catalog):
        result = get_checklists_by_specialization("arsitektur", "existing", catalog=catalog)
        for template in result:
            assert template.category != ChecklistCategory.ADMINISTRATIVE
            assert template.applicable_for is None or BuildingType.EXISTING in template.applicable_for
        assert "m11" not in ids(result)

    def test_mep_baru_includes_keyword_match(self, catalog):
        # m32 matches through the "pencahayaan"/"penghawaan" keywords in its description
        result = get_checklists_by_specialization("mep", "baru", catalog=catalog)
        assert ids(result) == ["m22", "m23", "m24", "m25", "m26", "m27", "m28", "m29", "m32"]

    def test_supervisor_sees_administrative_templates(self, catalog):
        result = get_checklists_by_specialization("building_inspection", "baru", catalog=catalog)
        assert ids(result)[0] == "dokumen_kelengkapan"
        assert len(result) == 18

    def test_supervisor_existing_skips_new_building_only(self, catalog):
        result = get_checklists_by_specialization("building_inspection", "existing", catalog=catalog)
        assert "m11" not in ids(result)
        assert len(result) == 17

    def test_unknown_or_missing_specialization_is_supervisor(self, catalog):
        supervisor = ids(get_checklists_by_specialization("building_inspection", "baru", catalog=catalog))
        assert ids(get_checklists_by_specialization(None, "baru", catalog=catalog)) == supervisor
        assert ids(get_checklists_by_specialization("juru_ukur", "baru", catalog=catalog)) == supervisor

    def test_legacy_alias_maps_to_canonical_profile(self, catalog):
        legacy = get_checklists_by_specialization("structural_engineering", "baru", catalog=catalog)
        assert ids(legacy) == ["m21", "m210"]

    def test_building_type_all_ignores_scenarios(self, catalog):
        result = get_checklists_by_specialization("arsitektur", "all", catalog=catalog)
        assert "m11" in ids(result)

    def test_perubahan_fungsi_has_no_structural_templates(self, catalog):
        assert get_checklists_by_specialization("struktur", "perubahan_fungsi", catalog=catalog) == []

    def test_unknown_building_type_rejected(self, catalog):
        with pytest.raises(ValidationError) as exc:
            get_checklists_by_specialization("struktur", "gudang", catalog=catalog)
        assert exc.value.kind == "validation_error"

    def test_repeated_calls_are_identical(self, catalog):
        first = get_checklists_by_specialization("mep", "existing", catalog=catalog)
        second = get_checklists_by_specialization("mep", "existing", catalog=catalog)
        assert [t.model_dump_json() for t in first] == [t.model_dump_json() for t in second]

    def test_template_level_category_match(self, raw_config):
        raw_config["checklist_templates"].append({
            "id": "x_fasad",
            "title": "Pemeriksaan Fasad Tambahan",
            "description": "Elemen tampak bangunan",
            "category": "tata_bangunan",
            "applicable_for": ["baru"],
            "items": [{"id": "panel_fasad", "item_name": "Panel Fasad", "columns": []}],
        })
        catalog = ChecklistCatalog.from_dict(raw_config)
        assert "x_fasad" in ids(get_checklists_by_specialization("arsitektur", "baru", catalog=catalog))
        assert "x_fasad" not in ids(get_checklists_by_specialization("struktur", "baru", catalog=catalog))


class TestNormalizeSpecialization:
    @pytest.mark.parametrize("raw,expected", [
        ("struktur", Specialization.STRUKTUR),
        (" MEP ", Specialization.MEP),
        ("mekanikal", Specialization.MEP),
        ("fire_safety", Specialization.MEP),
        ("environmental_health", Specialization.ARSITEKTUR),
        ("", Specialization.BUILDING_INSPECTION),
        (None, Specialization.BUILDING_INSPECTION),
        ("astronomer", Specialization.BUILDING_INSPECTION),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_specialization(raw) == expected

    def test_picker_lists_every_specialization(self):
        assert {s["value"] for s in INSPECTOR_SPECIALIZATIONS} == {s.value for s in Specialization}


# =========================================================================
# Item-level filtering
# =========================================================================


@pytest.fixture
def general_items(catalog):
    return {i.id: i for i in flatten_checklist_items([get_checklist_template(GENERAL_TEMPLATE_ID, catalog)])}


@pytest.fixture
def admin_item(catalog):
    return flatten_checklist_items([catalog.get("dokumen_kelengkapan")])[0]


class TestItemMatchingSpecialization:
    def test_administrative_items_never_match(self, admin_item):
        for spec in ("struktur", "arsitektur", "mep", "building_inspection", "unknown"):
            assert is_item_matching_specialization(admin_item, spec) is False

    def test_arsitektur(self, general_items):
        assert is_item_matching_specialization(general_items["fungsi_bangunan"], "arsitektur")
        assert is_item_matching_specialization(general_items["pegangan_tangga"], "arsitektur")
        # passive fire protection is inspected by the architect
        assert is_item_matching_specialization(general_items["struktur_tahan_api"], "arsitektur")
        assert not is_item_matching_specialization(general_items["pondasi"], "arsitektur")
        assert not is_item_matching_specialization(general_items["hydrant"], "arsitektur")

    def test_struktur(self, general_items):
        assert is_item_matching_specialization(general_items["pondasi"], "struktur")
        assert is_item_matching_specialization(general_items["sistem_gempa"], "struktur")
        assert not is_item_matching_specialization(general_items["hydrant"], "struktur")
        assert not is_item_matching_specialization(general_items["fungsi_bangunan"], "struktur")

    @pytest.mark.parametrize("spec", ["mep", "mekanikal", "elektrikal"])
    def test_mep_active_systems_only(self, general_items, spec):
        for item_id in ("hydrant", "pencahayaan_alami", "air_bersih", "lift", "panel_listrik", "cctv"):
            assert is_item_matching_specialization(general_items[item_id], spec), item_id
        for item_id in ("pondasi", "sistem_banjir", "struktur_tahan_api", "pegangan_tangga"):
            assert not is_item_matching_specialization(general_items[item_id], spec), item_id

    def test_unrecognized_specialization_matches_all(self, general_items):
        assert all(is_item_matching_specialization(i, "surveyor") for i in general_items.values())

    def test_items_for_inspector_general_template(self, catalog):
        items = get_items_for_inspector(GENERAL_TEMPLATE_ID, "struktur", catalog=catalog)
        assert {i.section_id for i in items} == {"m21", "m210"}
        assert len(items) == 10
        assert items[0].id == "pondasi"


# =========================================================================
# Template / item lookup
# =========================================================================


class TestTemplateLookup:
    def test_general_template_merges_technical_items(self, catalog):
        general = get_checklist_template(GENERAL_TEMPLATE_ID, catalog)
        technical_count = sum(len(t.items) for t in catalog.technical_templates())
        assert general.category is None
        assert len(general.items) == technical_count
        first = general.items[0]
        assert first.section_id == "m11"
        assert first.category == ChecklistCategory.TATA_BANGUNAN

    def test_general_template_is_built_once(self, catalog):
        assert get_checklist_template("general", catalog) is get_checklist_template("general", catalog)

    def test_unknown_template(self, catalog):
        with pytest.raises(NotFoundError):
            get_checklist_template("m99", catalog)

    def test_item_lookup_flat_and_nested(self, catalog):
        assert get_checklist_item("m21", "pondasi", catalog).item_name == "Pondasi"
        nested = get_checklist_item("dokumen_kelengkapan", "dokumen_slf_terdahulu", catalog)
        assert nested.id == "dokumen_slf_terdahulu"

    def test_unknown_item(self, catalog):
        with pytest.raises(NotFoundError) as exc:
            get_checklist_item("m21", "atap_kaca", catalog)
        assert exc.value.context["item_id"] == "atap_kaca"


# =========================================================================
# Flattening
# =========================================================================


class TestFlattenChecklistItems:
    def test_order_follows_input_templates(self, catalog):
        items = flatten_checklist_items([catalog.get("m12"), catalog.get("m11")])
        assert [i.id for i in items] == [
            "koefisien_dasar_bangunan",
            "koefisien_lantai_bangunan",
            "koefisien_daerah_hijau",
            "fungsi_bangunan",
            "penggunaan_ruang",
        ]
        assert [i.template_id for i in items] == ["m12"] * 3 + ["m11"] * 2

    def test_subsections_in_order_with_titles(self, catalog):
        items = flatten_checklist_items([catalog.get("dokumen_kelengkapan")])
        assert len(items) == 18
        assert items[0].id == "surat_permohonan_slf"
        assert items[0].subsection_title == "Bangunan Gedung Baru"
        assert items[0].applicable_for == (BuildingType.BARU,)
        assert items[6].id == "surat_permohonan_slf_existing"
        assert items[-1].subsection_title == "Bangunan Gedung Perubahan Fungsi"
        assert all(i.category == ChecklistCategory.ADMINISTRATIVE for i in items)
        assert all(i.template_title == "Pemeriksaan Kelengkapan Dokumen" for i in items)

    def test_flat_template_tags(self, catalog):
        item = flatten_checklist_items([catalog.get("m21")])[0]
        assert item.template_id == "m21"
        assert item.section_id == "m21"
        assert item.subsection_title is None
        assert item.category == ChecklistCategory.KEANDALAN
        assert item.wajib is True
        assert len(item.columns) == 4

    def test_empty_input(self):
        assert flatten_checklist_items([]) == []


# =========================================================================
# Photo geotag requirements
# =========================================================================


class TestItemRequiresPhotogeotag:
    def test_administrative_never_requires_geotag(self, catalog):
        assert item_requires_photogeotag("dokumen_kelengkapan", "dokumen_imb", catalog=catalog) is False

    def test_technical_templates_require_geotag(self, catalog):
        for template in catalog.technical_templates():
            assert item_requires_photogeotag(template.id, None, catalog=catalog) is True

    def test_explicit_category_wins_over_template(self, catalog):
        assert item_requires_photogeotag("m21", "pondasi", "administrative", catalog=catalog) is False
        assert item_requires_photogeotag("dokumen_kelengkapan", "dokumen_imb", "keselamatan", catalog=catalog) is True

    def test_general_template_uses_item_origin(self, catalog):
        assert item_requires_photogeotag("general", "pondasi", catalog=catalog) is True

    def test_unknown_template_requires_geotag(self, catalog):
        assert item_requires_photogeotag("m99", "x", catalog=catalog) is True

    def test_default_without_category_overrides(self, raw_config):
        raw_config["photo_requirements"]["per_category"] = {}
        catalog = ChecklistCatalog.from_dict(raw_config)
        assert item_requires_photogeotag("dokumen_kelengkapan", None, catalog=catalog) is False
        for category in ("tata_bangunan", "keandalan", "keselamatan"):
            assert item_requires_photogeotag("m21", None, category, catalog=catalog) is True

    def test_category_override_can_disable_geotag(self, raw_config):
        raw_config["photo_requirements"]["per_category"]["keselamatan"]["require_geotag"] = False
        catalog = ChecklistCatalog.from_dict(raw_config)
        assert item_requires_photogeotag("m31", "lebar_anak_tangga", catalog=catalog) is False
        assert item_requires_photogeotag("m21", "pondasi", catalog=catalog) is True


class TestGetPhotoRequirements:
    def test_template_category_rule(self, catalog):
        req = get_photo_requirements("m31", catalog=catalog)
        assert req.category == ChecklistCategory.KESELAMATAN
        assert (req.min_photos, req.max_photos) == (4, 12)

    def test_unknown_template_gets_global_rule(self, catalog):
        req = get_photo_requirements("m99", catalog=catalog)
        assert req.category is None
        assert req.require_geotag is True

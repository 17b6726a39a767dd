"""Tests for lot grouper."""

from lot_brain.discovery.field_normalizer import normalize_record
from lot_brain.discovery.lot_grouper import group_records
from lot_brain.discovery.lot_models import (
    EXTERNAL_RFT,
    INTERNAL_RFT,
    PROCESS,
    UNKNOWN,
    AnalysisConfig,
)
from lot_brain.discovery.work_order_resolver import resolve_work_orders


def _group(raws, config=None):
    config = config or AnalysisConfig()
    records = [normalize_record(raw, index=i, config=config) for i, raw in enumerate(raws)]
    resolution = resolve_work_orders(records, config)
    return group_records(records, resolution, config)


PROCESS_A = {"lot": "ABC1234", "assemblyWo": "900", "cartoningWo": "901"}


class TestGrouping:
    def test_internal_joins_via_work_order(self):
        result = _group([PROCESS_A, {"wo/lot#": "901", "#_of_errors": 0}])
        assert list(result.lots) == ["ABC1234"]
        assert len(result.lots["ABC1234"].records) == 2

    def test_external_joins_by_normalized_lot(self):
        result = _group([PROCESS_A, {"lot": "abc-1234", "category": "Labeling"}])
        assert len(result.lots["ABC1234"].external_records) == 1

    def test_lots_in_encounter_order(self):
        result = _group([
            {"lot": "DEF5678", "assemblyWo": "910"},
            PROCESS_A,
        ])
        assert list(result.lots) == ["DEF5678", "ABC1234"]

    def test_internal_work_order_that_is_a_lot_id(self):
        result = _group([
            {"wo/lot#": "ghi4321", "#_of_errors": 0},
            {"wo/lot#": "GHI4321", "#_of_errors": 2},
        ])
        assert list(result.lots) == ["GHI4321"]
        assert len(result.lots["GHI4321"].internal_records) == 2


class TestUnassigned:
    def test_unmapped_work_order_creates_no_lot(self):
        result = _group([PROCESS_A, {"wo/lot#": "555", "#_of_errors": 1}])
        assert "555" not in result.lots
        assert result.unassigned[INTERNAL_RFT] == 1

    def test_unknown_records_counted(self):
        result = _group([PROCESS_A, {"foo": "bar"}])
        assert result.unassigned[UNKNOWN] == 1
        assert len(result.lots["ABC1234"].records) == 1

    def test_process_without_lot(self):
        result = _group([{"bulk_batch": "B-1", "assembly_wo": "900"}])
        assert result.lots == {}
        assert result.unassigned[PROCESS] == 1


class TestOrphanDiscard:
    def test_single_orphan_discarded(self):
        result = _group([PROCESS_A, {"lot": "ZZZ9999", "category": "Labeling"}])
        assert "ZZZ9999" not in result.lots
        assert result.discarded_lots == ["ZZZ9999"]
        assert result.unassigned[EXTERNAL_RFT] == 1

    def test_two_records_kept(self):
        result = _group([
            {"lot": "ZZZ9999", "category": "Labeling"},
            {"lot": "ZZZ9999", "category": "Documentation"},
        ])
        assert "ZZZ9999" in result.lots
        assert result.discarded_lots == []

    def test_threshold_configurable(self):
        config = AnalysisConfig(min_orphan_records=3)
        result = _group([
            {"lot": "ZZZ9999", "category": "Labeling"},
            {"lot": "ZZZ9999", "category": "Documentation"},
        ], config)
        assert result.lots == {}
        assert result.unassigned[EXTERNAL_RFT] == 2

    def test_lot_with_process_never_discarded(self):
        result = _group([PROCESS_A])
        assert list(result.lots) == ["ABC1234"]


class TestPseudoLotRemap:
    def test_pseudo_lot_records_move_to_real_lot(self):
        result = _group([
            {"lot": "ABC1234", "assemblyWo": "900", "assembly_start": "2024-01-01"},
            {"lot": "2077291", "category": "Labeling", "date": "2024-01-05"},
            {"wo/lot#": "2077291", "#_of_errors": 1, "input_date": "2024-01-06"},
        ])
        assert list(result.lots) == ["ABC1234"]
        assert result.lots["ABC1234"].source_counts() == {"process": 1, "internal": 1, "external": 1}

"""End-to-end tests for the lot analysis engine."""

import json
from unittest.mock import patch

from lot_brain.discovery.lot_engine import analyze_lots, extract_records
from lot_brain.discovery.lot_models import (
    EXTERNAL_RFT,
    INTERNAL_RFT,
    PROCESS,
    UNKNOWN,
    AnalysisConfig,
)

CONFIG = AnalysisConfig()

PROCESS_A = {"lot": "ABC1234", "assemblyWo": "900", "cartoningWo": "901"}


# ---------------------------------------------------------------------------
# Reference scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_a_passing_internal_record(self):
        result = analyze_lots([PROCESS_A, {"wo/lot#": "900", "#_of_errors": 0}], CONFIG)
        assert list(result.lot_data) == ["ABC1234"]
        assert result.lot_data["ABC1234"].is_rft is True
        assert result.lot_metrics.rft_lots == 1

    def test_b_failing_internal_record(self):
        result = analyze_lots([PROCESS_A, {"wo/lot#": "900", "#_of_errors": 3}], CONFIG)
        assert result.lot_data["ABC1234"].is_rft is False
        assert result.lot_metrics.non_rft_lots == 1
        assert result.lot_metrics.lot_rft_percentage == 0.0

    def test_c_excluded_external_category(self):
        result = analyze_lots([
            PROCESS_A,
            {"wo/lot#": "900", "#_of_errors": 0},
            {"lot": "abc1234", "category": "Process Clarification"},
        ], CONFIG)
        lot = result.lot_data["ABC1234"]
        assert len(lot.external_records) == 1
        assert lot.is_rft is True

    def test_d_unmapped_work_order(self):
        result = analyze_lots([
            {**PROCESS_A, "assembly_start": "2024-01-01"},
            {"wo/lot#": "555", "#_of_errors": 1, "input_date": "2024-06-01"},
        ], CONFIG)
        assert "555" not in result.lot_data
        assert result.diagnostics.unassigned[INTERNAL_RFT] == 1
        assert result.diagnostics.unmapped_work_orders == ["555"]

    def test_e_average_cycle_time(self):
        result = analyze_lots([
            {"lot": "ABC1234", "assemblyWo": "900", "assembly_start": "2024-01-01", "release": "2024-01-11"},
            {"lot": "DEF5678", "assemblyWo": "910", "assembly_start": "2024-02-01", "release": "2024-02-21"},
        ], CONFIG)
        assert result.lot_data["ABC1234"].cycle_days == 10.0
        assert result.lot_data["DEF5678"].cycle_days == 20.0
        assert result.lot_metrics.avg_cycle_time_days == 15.0

    def test_cycle_time_spans_records_out_of_order(self):
        result = analyze_lots([
            {"lot": "ABC1234", "assemblyWo": "900", "assembly_start": "2024-01-20"},
            {"wo/lot#": "900", "#_of_errors": 0, "input_date": "2024-01-10"},
        ], CONFIG)
        assert result.lot_data["ABC1234"].cycle_days == 10.0


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


MIXED = [
    {"lot": "ABC1234", "assemblyWo": "900", "assembly_start": "2024-01-01", "release": "2024-01-20"},
    {"lot": "DEF5678", "assemblyWo": "910", "assembly_start": "2024-02-01", "release": "2024-02-15"},
    {"lot": "GHI9012", "assemblyWo": "920"},
    {"wo/lot#": "900", "#_of_errors": 0, "input_date": "2024-01-03"},
    {"wo/lot#": "910", "#_of_errors": 2, "error_type": "Missing Signature", "input_date": "2024-02-03"},
    {"lot": "DEF5678", "category": "Labeling", "date": "2024-02-10"},
    {"lot": "ABC1234", "category": "Process Clarification"},
    {"wo/lot#": "777", "#_of_errors": 1},
    {"note": "stray row"},
]


class TestProperties:
    def test_lot_counts_add_up(self):
        m = analyze_lots(MIXED, CONFIG).lot_metrics
        assert m.rft_lots + m.non_rft_lots + m.indeterminate_lots == m.total_lots
        assert (m.rft_lots, m.non_rft_lots, m.indeterminate_lots) == (1, 1, 1)

    def test_idempotent(self):
        first = analyze_lots(MIXED, CONFIG)
        second = analyze_lots(MIXED, CONFIG)
        assert first.lot_metrics.to_dict() == second.lot_metrics.to_dict()
        assert {k: v.to_dict() for k, v in first.lot_data.items()} == {
            k: v.to_dict() for k, v in second.lot_data.items()
        }

    def test_primary_stage_values(self):
        result = analyze_lots(MIXED, CONFIG)
        assert all(lot.primary_stage in ("WIP", "FG", "Unknown") for lot in result.lot_data.values())

    def test_every_record_accounted_for(self):
        result = analyze_lots(MIXED, CONFIG)
        in_lots = sum(len(lot.records) for lot in result.lot_data.values())
        assert in_lots + result.diagnostics.total_unassigned == len(MIXED)

    def test_diagnostics(self):
        diag = analyze_lots(MIXED, CONFIG).diagnostics
        assert diag.total_records == len(MIXED)
        assert diag.records_by_type == {PROCESS: 3, INTERNAL_RFT: 3, EXTERNAL_RFT: 2, UNKNOWN: 1}
        assert diag.unknown_records == 1
        assert diag.unmapped_work_orders == ["777"]
        assert diag.resolver_phase_counts["direct"] == 3
        assert [p["pass"] for p in diag.passes][:3] == ["classify", "normalize", "resolve_work_orders"]

    def test_pass_log_carries_resolver_and_grouping_counts(self):
        diag = analyze_lots(MIXED, CONFIG).diagnostics
        passes = {p["pass"]: p for p in diag.passes}
        resolve = passes["resolve_work_orders"]
        assert resolve["status"] == "ok"
        assert resolve["records"] == len(MIXED)
        assert resolve["phases"] == diag.resolver_phase_counts
        assert resolve["unmapped"] == 1
        group = passes["group_lots"]
        assert group["lots"] == 3
        assert group["unassigned"] == diag.unassigned

    def test_result_is_json_serializable(self):
        out = json.loads(json.dumps(analyze_lots(MIXED, CONFIG).to_dict()))
        assert set(out) == {"lot_data", "lot_metrics", "insights", "recommendations", "diagnostics"}
        assert out["lot_data"]["ABC1234"]["start_date"] == "2024-01-01T00:00:00"


class TestPseudoLot:
    def test_pseudo_lot_remapped(self):
        result = analyze_lots([
            {"lot": "ABC1234", "assemblyWo": "900", "assembly_start": "2024-01-01"},
            {"lot": "2077291", "category": "Labeling", "date": "2024-01-05"},
            {"wo/lot#": "2077291", "#_of_errors": 1, "input_date": "2024-01-06"},
        ], CONFIG)
        assert list(result.lot_data) == ["ABC1234"]
        assert result.lot_data["ABC1234"].is_rft is False
        assert result.diagnostics.lot_remaps == {"2077291": "ABC1234"}


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------


class TestInput:
    def test_records_wrapper(self):
        result = analyze_lots({"records": [PROCESS_A]}, CONFIG)
        assert list(result.lot_data) == ["ABC1234"]

    def test_empty(self):
        result = analyze_lots([], CONFIG)
        assert result.lot_data == {}
        assert result.lot_metrics.total_lots == 0
        assert result.lot_metrics.lot_rft_percentage == 0.0
        assert result.insights == []

    def test_none(self):
        assert analyze_lots(None, CONFIG).lot_metrics.total_lots == 0

    def test_non_dict_entries_skipped(self):
        result = analyze_lots([1, "x", PROCESS_A], CONFIG)
        assert result.diagnostics.skipped_records == 2
        assert list(result.lot_data) == ["ABC1234"]

    def test_extract_records(self):
        assert extract_records({"other": []}) == ([], 0)
        assert extract_records("text") == ([], 0)
        assert extract_records([PROCESS_A, None]) == ([PROCESS_A], 1)

    def test_default_config_from_settings(self):
        result = analyze_lots([PROCESS_A, {"wo/lot#": "900", "#_of_errors": 0}])
        assert result.lot_data["ABC1234"].is_rft is True


class TestInsightFailure:
    def test_metrics_survive_insight_error(self):
        with patch(
            "lot_brain.discovery.lot_engine.generate_insights",
            side_effect=RuntimeError("boom"),
        ):
            result = analyze_lots([PROCESS_A, {"wo/lot#": "900", "#_of_errors": 3}], CONFIG)
        assert result.insights == []
        assert result.lot_metrics.non_rft_lots == 1
        failed = [p for p in result.diagnostics.passes if p["status"] == "failed"]
        assert failed[0]["pass"] == "generate_insights"
        assert failed[0]["error_type"] == "RuntimeError"

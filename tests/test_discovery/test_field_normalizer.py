"""Tests for field normalizer."""

from datetime import datetime

from lot_brain.discovery.field_normalizer import (
    detect_stage,
    normalize_lot_id,
    normalize_record,
    normalize_records,
    parse_date,
    parse_error_count,
)
from lot_brain.discovery.lot_models import (
    EXTERNAL_RFT,
    FG,
    INTERNAL_RFT,
    PROCESS,
    STAGE_UNKNOWN,
    UNKNOWN,
    WIP,
    AnalysisConfig,
)


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


class TestNormalizeLotId:
    def test_uppercase_alphanumeric(self):
        assert normalize_lot_id(" abc-1234 ") == "ABC1234"

    def test_numeric(self):
        assert normalize_lot_id(2077291) == "2077291"

    def test_integral_float(self):
        assert normalize_lot_id(2077291.0) == "2077291"

    def test_blank(self):
        assert normalize_lot_id(None) is None
        assert normalize_lot_id("  ") is None
        assert normalize_lot_id("--") is None


class TestParseDate:
    def test_iso_date(self):
        assert parse_date("2024-01-15") == datetime(2024, 1, 15)

    def test_timezone_converted_to_utc(self):
        assert parse_date("2024-01-15T10:00:00+02:00") == datetime(2024, 1, 15, 8, 0)

    def test_epoch_millis(self):
        assert parse_date(0) == datetime(1970, 1, 1)

    def test_datetime_passthrough(self):
        assert parse_date(datetime(2024, 3, 1, 12)) == datetime(2024, 3, 1, 12)

    def test_unparsable(self):
        assert parse_date("not a date") is None

    def test_missing(self):
        assert parse_date(None) is None
        assert parse_date("") is None
        assert parse_date(float("nan")) is None


class TestParseErrorCount:
    def test_integer_text(self):
        assert parse_error_count("3") == 3

    def test_float_text(self):
        assert parse_error_count("2.0") == 2

    def test_non_numeric(self):
        assert parse_error_count("abc") == 0

    def test_missing(self):
        assert parse_error_count(None) == 0

    def test_negative_clamped(self):
        assert parse_error_count(-2) == 0


class TestDetectStage:
    def test_internal_defaults_to_wip(self):
        assert detect_stage({}, INTERNAL_RFT) == WIP

    def test_process_defaults_to_fg(self):
        assert detect_stage({}, PROCESS) == FG

    def test_explicit_stage(self):
        assert detect_stage({"stage": "assembly"}, PROCESS) == WIP

    def test_department_keyword(self):
        assert detect_stage({"department": "Packaging Line 2"}, INTERNAL_RFT) == FG

    def test_unknown_family(self):
        assert detect_stage({"stage": "WIP"}, UNKNOWN) == STAGE_UNKNOWN


# ---------------------------------------------------------------------------
# Per-family normalization
# ---------------------------------------------------------------------------


class TestNormalizeProcess:
    def test_lot_and_work_orders(self):
        rec = normalize_record({"lot": "ABC1234", "assemblyWo": "900", "cartoningWo": "901"})
        assert rec.record_type == PROCESS
        assert rec.lot_id == "ABC1234"
        assert rec.work_orders == ("900", "901")
        assert rec.work_order == "900"
        assert rec.is_rft is True

    def test_dates(self):
        rec = normalize_record(
            {"fg_batch": "ABC1234", "assembly_wo": 900, "assembly_start": "2024-01-01", "release": "2024-01-11"},
            PROCESS,
        )
        assert rec.work_orders == ("900",)
        assert rec.start_date == datetime(2024, 1, 1)
        assert rec.end_date == datetime(2024, 1, 11)

    def test_duplicate_work_orders_collapsed(self):
        rec = normalize_record({"lot": "ABC1234", "assembly_wo": "900", "assemblyWo": "900"}, PROCESS)
        assert rec.work_orders == ("900",)


class TestNormalizeInternal:
    def test_passing(self):
        rec = normalize_record({"wo/lot#": "900", "#_of_errors": 0})
        assert rec.record_type == INTERNAL_RFT
        assert rec.work_order == "900"
        assert rec.error_count == 0
        assert rec.is_rft is True
        assert rec.stage == WIP

    def test_failing(self):
        rec = normalize_record({"wo/lot#": "900", "#_of_errors": "3", "error_type": "Missing Signature"})
        assert rec.is_rft is False
        assert rec.error_count == 3
        assert rec.issue_category == "Missing Signature"

    def test_float_work_order_from_spreadsheet(self):
        rec = normalize_record({"wo/lot#": 900.0, "#_of_errors": 1}, INTERNAL_RFT)
        assert rec.work_order == "900"

    def test_work_order_from_discriminator(self):
        rec = normalize_record({"batchId": "Internal RFT_2077291_5", "#_of_errors": 0}, INTERNAL_RFT)
        assert rec.work_order == "2077291"

    def test_bad_error_count_is_zero(self):
        rec = normalize_record({"wo/lot#": "900", "#_of_errors": "n/a"}, INTERNAL_RFT)
        assert rec.error_count == 0
        assert rec.is_rft is True

    def test_date(self):
        rec = normalize_record({"wo/lot#": "900", "input_date": "2024-02-03"}, INTERNAL_RFT)
        assert rec.start_date == rec.end_date == datetime(2024, 2, 3)


class TestNormalizeExternal:
    def test_excluded_category_passes(self):
        rec = normalize_record({"lot": "abc1234", "category": "Process Clarification"})
        assert rec.record_type == EXTERNAL_RFT
        assert rec.lot_id == "ABC1234"
        assert rec.is_rft is True

    def test_real_issue_fails(self):
        rec = normalize_record({"lot": "ABC1234", "category": "Documentation"})
        assert rec.is_rft is False

    def test_missing_category_fails(self):
        rec = normalize_record({"lot": "ABC1234", "category": None}, EXTERNAL_RFT)
        assert rec.is_rft is False

    def test_custom_exclusions(self):
        config = AnalysisConfig(exclusion_categories=("Documentation",))
        rec = normalize_record({"lot": "ABC1234", "category": "Documentation"}, config=config)
        assert rec.is_rft is True


class TestNormalizeUnknown:
    def test_not_evaluable(self):
        rec = normalize_record({"foo": "bar"})
        assert rec.record_type == UNKNOWN
        assert rec.is_rft is None
        assert rec.stage == STAGE_UNKNOWN


class TestNormalizeRecords:
    def test_ids_and_order(self):
        recs = normalize_records([{"wo/lot#": "900"}, {"batchId": "Internal RFT_901", "#_of_errors": 1}])
        assert [r.index for r in recs] == [0, 1]
        assert recs[0].id == "record-0"
        assert recs[1].id == "Internal RFT_901"

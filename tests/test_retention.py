from datetime import date, datetime

from app.edms.modules.retention.catalog import SsicRecord, parse_disposition, record_from_mapping, record_from_request
from app.edms.modules.retention.service import (
    add_months,
    calculate_cutoff_date,
    calculate_disposal_date,
    disposal_preview,
    disposal_status,
    disposal_summary,
    format_cutoff,
    format_retention,
    group_filed_by_disposal_year,
)
from app.edms.modules.routing.models import Request


def _rec(**kw):
    kw.setdefault("ssic", "1000")
    return SsicRecord(**kw)


def _filed(ssic="1000", bucket_title="Military Personnel", filed_at=datetime(2024, 6, 15), **kw):
    kw.setdefault("is_permanent", False)
    return Request(
        subject="Test",
        uploaded_by_id="1",
        current_stage="ARCHIVED",
        ssic=ssic,
        ssic_bucket_title=bucket_title,
        filed_at=filed_at,
        **kw,
    )


class TestCutoff:
    def test_calendar_year(self):
        assert calculate_cutoff_date("CALENDAR_YEAR", date(2024, 6, 15)) == date(2024, 12, 31)

    def test_fiscal_year_boundary(self):
        assert calculate_cutoff_date("FISCAL_YEAR", date(2024, 9, 30)) == date(2024, 9, 30)
        assert calculate_cutoff_date("FISCAL_YEAR", date(2024, 10, 1)) == date(2025, 9, 30)

    def test_event_triggers(self):
        assert calculate_cutoff_date("CASE_CLOSURE", date(2024, 6, 15)) == date(2024, 6, 15)
        assert calculate_cutoff_date("SEPARATION", date(2024, 6, 15), date(2025, 1, 2)) == date(2025, 1, 2)

    def test_immediate_and_unknown(self):
        assert calculate_cutoff_date("IMMEDIATE", date(2024, 6, 15)) == date(2024, 6, 15)
        assert calculate_cutoff_date("WHENEVER", date(2024, 6, 15)) == date(2024, 12, 31)
        assert calculate_cutoff_date(None, datetime(2024, 6, 15, 12)) == date(2024, 12, 31)

    def test_no_reference_date(self):
        assert calculate_cutoff_date("CALENDAR_YEAR", None) is None


class TestDisposalDate:
    def test_calendar_year_plus_years(self):
        rec = _rec(cutoff_trigger="CALENDAR_YEAR", retention_value=3, retention_unit="YEARS")
        assert calculate_disposal_date(rec, date(2024, 6, 15)) == date(2027, 12, 31)

    def test_permanent_has_no_disposal_date(self):
        rec = _rec(is_permanent=True, cutoff_trigger="CALENDAR_YEAR", retention_value=3, retention_unit="YEARS")
        assert calculate_disposal_date(rec, date(2024, 6, 15)) is None

    def test_month_end_is_clamped(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        rec = _rec(cutoff_trigger="FISCAL_YEAR", retention_value=5, retention_unit="MONTHS")
        assert calculate_disposal_date(rec, date(2024, 3, 1)) == date(2025, 2, 28)

    def test_leap_day_plus_a_year(self):
        rec = _rec(cutoff_trigger="EVENT", retention_value=1, retention_unit="YEARS")
        assert calculate_disposal_date(rec, date(2024, 1, 1), event_date=date(2024, 2, 29)) == date(2025, 2, 28)

    def test_days(self):
        rec = _rec(cutoff_trigger="IMMEDIATE", retention_value=90, retention_unit="DAYS")
        assert calculate_disposal_date(rec, date(2024, 1, 1)) == date(2024, 3, 31)

    def test_incomplete_records(self):
        assert calculate_disposal_date(None, date(2024, 6, 15)) is None
        assert calculate_disposal_date(_rec(retention_unit="YEARS"), date(2024, 6, 15)) is None
        assert calculate_disposal_date(_rec(retention_value=2, retention_unit="EVENT_BASED"), date(2024, 6, 15)) is None
        assert calculate_disposal_date(_rec(retention_value=2, retention_unit="YEARS"), None) is None

    def test_mapping_record(self):
        data = {"ssic": "5000", "cutoff_trigger": "calendar year", "retention_value": "2", "retention_unit": "years"}
        assert calculate_disposal_date(data, date(2024, 6, 15)) == date(2026, 12, 31)


class TestGrouping:
    def test_years_then_permanent_then_unknown(self):
        late = _filed(cutoff_trigger="CALENDAR_YEAR", retention_value=3, retention_unit="YEARS")
        early = _filed(cutoff_trigger="CALENDAR_YEAR", retention_value=1, retention_unit="YEARS", ssic_bucket="5000")
        permanent = _filed(is_permanent=True)
        unknown = _filed(bucket_title=None)
        unfiled = _filed(filed_at=None, cutoff_trigger="CALENDAR_YEAR", retention_value=1, retention_unit="YEARS")

        grouped = group_filed_by_disposal_year([unknown, late, permanent, unfiled, early])
        assert list(grouped) == ["2025", "2027", "Permanent", "Unknown"]
        assert grouped["2027"] == {"Military Personnel": [late]}
        assert grouped["Permanent"] == {"Military Personnel": [permanent]}
        assert grouped["Unknown"] == {"Unclassified": [unknown]}

    def test_empty(self):
        assert group_filed_by_disposal_year([]) == {}


class TestParseDisposition:
    def test_calendar_year_destroy(self):
        parsed = parse_disposition("Cutoff at end of CY. Destroy 3 years after cutoff.")
        assert parsed == {
            "is_permanent": False,
            "cutoff_trigger": "CALENDAR_YEAR",
            "cutoff_description": "End of calendar year (December 31)",
            "retention_value": 3,
            "retention_unit": "YEARS",
            "disposal_action": "DESTROY",
        }

    def test_permanent(self):
        parsed = parse_disposition("PERMANENT. Cutoff at end of FY. Transfer to the National Archives 15 years after cutoff.")
        assert parsed["is_permanent"] is True
        assert parsed["cutoff_trigger"] == "FISCAL_YEAR"
        assert parsed["disposal_action"] == "TRANSFER_NARA"

    def test_superseded(self):
        parsed = parse_disposition("Destroy when superseded or obsolete.")
        assert parsed["cutoff_trigger"] == "EVENT_BASED"
        assert parsed["retention_unit"] == "EVENT_BASED"
        assert parsed["retention_value"] is None

    def test_blank(self):
        assert parse_disposition(None)["cutoff_trigger"] == "UNSPECIFIED"

    def test_explicit_fields_win_over_text(self):
        rec = record_from_mapping(
            {
                "ssic": " 1000 ",
                "retention_value": 6,
                "disposition_text": "Cutoff at end of CY. Destroy 3 years after cutoff.",
            }
        )
        assert rec.ssic == "1000"
        assert rec.retention_value == 6
        assert rec.retention_unit == "YEARS"
        assert rec.cutoff_trigger == "CALENDAR_YEAR"


class TestDisplay:
    def test_format_retention(self):
        assert format_retention(_rec(retention_value=1, retention_unit="YEARS")) == "1 year"
        assert format_retention(_rec(retention_value=6, retention_unit="MONTHS")) == "6 months"
        assert format_retention(_rec(is_permanent=True)) == "Permanent - Transfer to NARA"
        assert format_retention(_rec(retention_unit="EVENT_BASED")) == "Destroy when obsolete/superseded"
        assert format_retention(None) == "Retention not specified"

    def test_format_cutoff(self):
        assert format_cutoff("FISCAL_YEAR") == "End of Fiscal Year"
        assert format_cutoff(None) == "Unspecified"

    def test_summary(self):
        rec = _rec(cutoff_trigger="CALENDAR_YEAR", retention_value=3, retention_unit="YEARS")
        assert disposal_summary(rec) == "TEMPORARY: 3 years after End of Calendar Year"
        assert disposal_summary(_rec(is_permanent=True)) == "PERMANENT: Transfer to National Archives"


class TestStatus:
    def test_eligibility(self):
        rec = _rec(cutoff_trigger="CALENDAR_YEAR", retention_value=3, retention_unit="YEARS")
        before = disposal_status(rec, date(2024, 6, 15), today=date(2027, 12, 1))
        assert before["eligible"] is False
        assert before["days_remaining"] == 30
        after = disposal_status(rec, date(2024, 6, 15), today=date(2028, 1, 1))
        assert after["eligible"] is True
        assert after["days_remaining"] == 0
        assert after["disposal_date"] == "2027-12-31"

    def test_preview_uses_filed_date(self):
        r = _filed(cutoff_trigger="CALENDAR_YEAR", retention_value=3, retention_unit="YEARS", created_at=datetime(2023, 1, 5))
        preview = disposal_preview(r, today=date(2025, 1, 1))
        assert preview["reference_date"] == "2024-06-15"
        assert preview["disposal_date"] == "2027-12-31"
        assert preview["year"] == "2027"
        assert preview["filed"] is True

    def test_preview_of_unclassified_request(self):
        r = Request(subject="Test", uploaded_by_id="1", current_stage="PLATOON_REVIEW", created_at=datetime(2024, 6, 15))
        assert record_from_request(r) is None
        preview = disposal_preview(r, today=date(2025, 1, 1))
        assert preview["disposal_date"] is None
        assert preview["year"] == "Unknown"
        assert preview["bucket"] == "Unclassified"

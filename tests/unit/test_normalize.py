"""Unit tests for salestrack_etl.normalize."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from salestrack_etl.models import JOB_STATUSES, JOB_TYPES
from salestrack_etl.normalize import (
    _CATEGORY_KEYWORDS,
    _STATUS_KEYWORDS,
    clean_string,
    normalize_category,
    normalize_company_name,
    normalize_key_part,
    normalize_space,
    normalize_status_hint,
    parse_date,
    parse_money,
    trim,
)


# ---------------------------------------------------------------------------
# trim / clean_string
# ---------------------------------------------------------------------------

class TestTrim:
    def test_strips_whitespace(self):
        assert trim("  hello  ") == "hello"

    def test_empty_string_returns_none(self):
        assert trim("") is None

    def test_whitespace_only_returns_none(self):
        assert trim("   ") is None

    def test_none_returns_none(self):
        assert trim(None) is None

    def test_coerces_numbers(self):
        assert trim(42) == "42"


class TestCleanString:
    def test_trims(self):
        assert clean_string("  Riverside  ") == "Riverside"

    def test_none_is_empty(self):
        assert clean_string(None) == ""

    def test_number_coerced(self):
        assert clean_string(1234) == "1234"


class TestNormalizeSpace:
    def test_collapses_internal_spaces(self):
        assert normalize_space("100   Main\tSt") == "100 Main St"

    def test_none(self):
        assert normalize_space(None) is None


class TestNormalizeKeyPart:
    def test_lower_and_trim(self):
        assert normalize_key_part("  Riverside Plant ") == "riverside plant"

    def test_internal_whitespace_collapsed(self):
        assert normalize_key_part("Riverside \t  Plant") == "riverside plant"

    def test_none_is_empty(self):
        assert normalize_key_part(None) == ""


# ---------------------------------------------------------------------------
# parse_money
# ---------------------------------------------------------------------------

class TestParseMoney:
    def test_currency_and_commas(self):
        assert parse_money("$2,000,000") == Decimal("2000000")

    def test_range_returns_upper_bound(self):
        assert parse_money("$ 4,500,000 - $ 5,000,000") == Decimal("5000000")

    def test_range_with_en_dash(self):
        assert parse_money("$1,000 – $2,500") == Decimal("2500")

    def test_decimal_cents(self):
        assert parse_money("$ 12,345.67") == Decimal("12345.67")

    def test_native_int_passes_through(self):
        assert parse_money(1500000) == Decimal("1500000")

    def test_native_float_passes_through(self):
        assert parse_money(1234.5) == Decimal("1234.5")

    @pytest.mark.parametrize("raw", ["TBD", "", "   ", None, "nan", "N/A", True])
    def test_non_numeric_is_none(self, raw):
        assert parse_money(raw) is None

    def test_never_raises_on_garbage(self):
        assert parse_money("$$--,,") is None


# ---------------------------------------------------------------------------
# parse_date
# ---------------------------------------------------------------------------

class TestParseDate:
    def test_date_object(self):
        assert parse_date(date(2025, 3, 5)) == date(2025, 3, 5)

    def test_datetime_object(self):
        assert parse_date(datetime(2025, 3, 5, 14, 30)) == date(2025, 3, 5)

    def test_excel_serial_number(self):
        assert parse_date(45658) == date(2025, 1, 1)

    def test_excel_serial_float(self):
        assert parse_date(45658.75) == date(2025, 1, 1)

    def test_excel_serial_string(self):
        assert parse_date("45658") == date(2025, 1, 1)

    def test_iso_date(self):
        assert parse_date("2025-03-05") == date(2025, 3, 5)

    def test_iso_with_time(self):
        assert parse_date("2025-03-05 14:30:00") == date(2025, 3, 5)

    def test_iso_t_separator_with_fraction(self):
        assert parse_date("2025-03-05T14:30:00.000Z") == date(2025, 3, 5)

    def test_us_format(self):
        assert parse_date("03/05/2025") == date(2025, 3, 5)

    def test_day_mon_yy(self):
        assert parse_date("05-Mar-25") == date(2025, 3, 5)

    @pytest.mark.parametrize("raw", ["NaT", "nan", "", None, "0000-00-00", "next spring", 0, -5])
    def test_unparseable_is_none(self, raw):
        assert parse_date(raw) is None


# ---------------------------------------------------------------------------
# normalize_category
# ---------------------------------------------------------------------------

class TestNormalizeCategory:
    def test_school_is_commercial(self):
        assert normalize_category("Elementary School") == "commercial"

    def test_university_is_commercial(self):
        assert normalize_category("University Lab Building") == "commercial"

    def test_water_is_industrial(self):
        assert normalize_category("Water Treatment Plant") == "industrial"

    def test_sewer_is_industrial(self):
        assert normalize_category("Sewer Line Replacement") == "industrial"

    def test_apartments_are_residential(self):
        assert normalize_category("Apartments") == "residential"

    def test_equipment(self):
        assert normalize_category("Heavy Equipment Rental") == "equipment"

    def test_unmatched_defaults_to_commercial(self):
        assert normalize_category("Miscellaneous") == "commercial"

    def test_blank_defaults_to_commercial(self):
        assert normalize_category(None) == "commercial"

    def test_every_category_is_a_job_type(self):
        assert {c for c, _ in _CATEGORY_KEYWORDS} <= set(JOB_TYPES)


# ---------------------------------------------------------------------------
# normalize_status_hint
# ---------------------------------------------------------------------------

class TestNormalizeStatusHint:
    def test_new_project_is_planning(self):
        assert normalize_status_hint("New Project") == "planning"

    def test_renovation_is_active(self):
        assert normalize_status_hint("Renovation") == "active"

    def test_addition_is_active(self):
        assert normalize_status_hint("Addition") == "active"

    def test_completed(self):
        assert normalize_status_hint("Completed") == "completed"

    def test_on_hold_is_pending(self):
        assert normalize_status_hint("On Hold") == "pending"

    def test_pre_bid_is_planning(self):
        assert normalize_status_hint("Pre-Bid") == "planning"

    def test_pre_construction_is_planning(self):
        assert normalize_status_hint("Pre-Construction") == "planning"

    def test_new_construction_is_planning(self):
        assert normalize_status_hint("New Construction") == "planning"

    def test_under_construction_is_active(self):
        assert normalize_status_hint("Under Construction") == "active"

    def test_keyword_inside_a_word_does_not_match(self):
        assert normalize_status_hint("Abandoned") is None
        assert normalize_status_hint("Incomplete") is None

    def test_no_match_is_none(self):
        assert normalize_status_hint("Xyzzy") is None

    def test_blank_is_none(self):
        assert normalize_status_hint(None) is None

    def test_every_hint_is_a_job_status(self):
        assert {s for s, _ in _STATUS_KEYWORDS} <= set(JOB_STATUSES)


# ---------------------------------------------------------------------------
# normalize_company_name
# ---------------------------------------------------------------------------

class TestNormalizeCompanyName:
    def test_wrapped_in_parens(self):
        assert normalize_company_name("(ANVIL)") == "ANVIL"

    def test_strips_corp_suffix(self):
        assert normalize_company_name("Acme Co.") == "ACME"

    def test_drops_middle_aside(self):
        assert normalize_company_name("Granite Rock (Vulcan Materials) Inc") == "GRANITE ROCK"

    def test_strips_punctuation(self):
        assert normalize_company_name("Smith & Sons, LLC") == "SMITH SONS"

    def test_blank_is_none(self):
        assert normalize_company_name("   ") is None

"""Rule tables and their pure-Python functions (no SparkSession needed)."""

from datetime import date

import pytest

from cleansing_engine import (
    CRM_GENDER_CODES,
    ERP_GENDER_CODES,
    MARITAL_STATUS_CODES,
    NOT_AVAILABLE,
    PRODUCT_LINE_CODES,
    VOCABULARIES,
    coerce_cost,
    decompose_product_key,
    derive_price,
    normalize_code,
    normalize_country,
    parse_date_code,
    remove_separators,
    repair_sales_amount,
    strip_junk_prefix,
)


class TestCodeLookups:

    @pytest.mark.parametrize("raw, expected", [
        ("S", "Single"),
        (" m ", "Married"),
        ("s", "Single"),
        ("X", NOT_AVAILABLE),
        ("", NOT_AVAILABLE),
        (None, NOT_AVAILABLE),
    ])
    def test_marital_status(self, raw, expected):
        assert normalize_code(raw, MARITAL_STATUS_CODES) == expected

    def test_crm_gender_accepts_short_codes_only(self):
        assert normalize_code("F", CRM_GENDER_CODES) == "Female"
        assert normalize_code("m", CRM_GENDER_CODES) == "Male"
        assert normalize_code("Female", CRM_GENDER_CODES) == NOT_AVAILABLE

    @pytest.mark.parametrize("raw, expected", [
        ("F", "Female"),
        ("female ", "Female"),
        ("MALE", "Male"),
        ("m", "Male"),
        ("unknown", NOT_AVAILABLE),
        (None, NOT_AVAILABLE),
    ])
    def test_erp_gender(self, raw, expected):
        assert normalize_code(raw, ERP_GENDER_CODES) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("M", "Mountain"),
        ("r ", "Road"),
        ("S", "Other Sales"),
        ("T", "Touring"),
        ("Z", NOT_AVAILABLE),
        (None, NOT_AVAILABLE),
    ])
    def test_product_line(self, raw, expected):
        assert normalize_code(raw, PRODUCT_LINE_CODES) == expected


class TestCountry:

    @pytest.mark.parametrize("raw, expected", [
        (" usa ", "United States"),
        ("US", "United States"),
        ("DE", "Germany"),
        ("", NOT_AVAILABLE),
        ("   ", NOT_AVAILABLE),
        (None, NOT_AVAILABLE),
        (" France ", "France"),
    ])
    def test_normalize_country(self, raw, expected):
        assert normalize_country(raw) == expected


class TestProductKey:

    def test_segmented_key(self):
        assert decompose_product_key("AB-1234-XY9Q") == ("AB_1234", "XY9Q")

    def test_source_key_keeps_remaining_segments(self):
        assert decompose_product_key("CO-RF-FR-R92B-58") == ("CO_RF", "FR-R92B-58")

    def test_key_is_trimmed_first(self):
        assert decompose_product_key("  AC-HE-HL-U509-R ") == ("AC_HE", "HL-U509-R")

    def test_short_key_uses_fixed_positions(self):
        assert decompose_product_key("ABCDEFGHI") == ("ABCDE", "GHI")

    def test_null_key(self):
        assert decompose_product_key(None) == (None, None)


class TestDateCodes:

    def test_valid_code(self):
        assert parse_date_code(20240115) == date(2024, 1, 15)

    @pytest.mark.parametrize("raw", [0, None, 2024011, 202401150, 20241345, -2024011])
    def test_malformed_codes_become_null(self, raw):
        assert parse_date_code(raw) is None


class TestIdentifiers:

    def test_strip_junk_prefix(self):
        assert strip_junk_prefix("NASAW00011000") == "AW00011000"
        assert strip_junk_prefix(" AW00011000 ") == "AW00011000"
        assert strip_junk_prefix(None) is None

    def test_remove_separators(self):
        assert remove_separators("AW-00011000") == "AW00011000"
        assert remove_separators("A-W-1") == "AW1"
        assert remove_separators(None) is None

    def test_coerce_cost(self):
        assert coerce_cost(None) == 0
        assert coerce_cost(-5) == 0
        assert coerce_cost(12) == 12


class TestSalesRepair:

    def test_inconsistent_amount_is_recomputed(self):
        assert repair_sales_amount(25, 3, 10) == 30

    def test_consistent_amount_is_kept(self):
        assert repair_sales_amount(30, 3, 10) == 30

    def test_missing_or_non_positive_amount_is_recomputed(self):
        assert repair_sales_amount(None, 2, 15) == 30
        assert repair_sales_amount(-30, 2, 15) == 30
        assert repair_sales_amount(0, 2, 15) == 30

    def test_negative_price_uses_absolute_value(self):
        assert repair_sales_amount(25, 3, -10) == 30

    def test_amount_kept_when_price_missing(self):
        assert repair_sales_amount(50, 5, None) == 50

    def test_price_derived_when_missing(self):
        assert derive_price(None, 50, 5) == 10

    def test_price_derived_when_non_positive(self):
        assert derive_price(-10, 30, 3) == 10
        assert derive_price(0, 30, 3) == 10

    def test_positive_price_is_kept(self):
        assert derive_price(12, 50, 5) == 12

    def test_zero_quantity_gives_no_price(self):
        assert derive_price(None, 50, 0) is None


def test_vocabularies_include_not_available():
    assert VOCABULARIES["marital_status"] == ["Married", "Single", NOT_AVAILABLE]
    assert VOCABULARIES["gender"] == ["Female", "Male", NOT_AVAILABLE]
    assert set(VOCABULARIES["product_line"]) == {
        "Mountain", "Road", "Other Sales", "Touring", NOT_AVAILABLE
    }

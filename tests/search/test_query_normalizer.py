from __future__ import annotations

from datetime import date

import pytest

from tradescope.errors import ValidationError
from tradescope.search.models import SearchQuery
from tradescope.search.normalizer import normalize_hs_pattern, normalize_query


def test_defaults_for_empty_filters():
    query = normalize_query({})

    assert query == SearchQuery()
    assert query.page == 1
    assert query.page_size == 20
    assert query.sort_by == "shipmentDate"
    assert query.sort_order == "desc"
    assert query.include_aggregations is True


def test_trailing_wildcard_becomes_prefix():
    query = normalize_query({"hsCode": "7308*"})

    assert query.hs_code == "7308"
    assert query.hs_code_is_prefix is True


def test_separators_are_stripped_from_exact_codes():
    assert normalize_hs_pattern("7308.90") == ("730890", False)
    assert normalize_hs_pattern("7308 90-95") == ("73089095", False)
    assert normalize_hs_pattern("") == (None, False)


@pytest.mark.parametrize(
    "raw",
    ["73**08", "73*08", "*7308", "7*", "7308", "73A890", "12345678901", "7308**"],
)
def test_malformed_hs_patterns_are_rejected(raw):
    with pytest.raises(ValidationError) as excinfo:
        normalize_query({"hsCode": raw})
    assert excinfo.value.field == "hsCode"


def test_unknown_filter_is_named():
    with pytest.raises(ValidationError) as excinfo:
        normalize_query({"hsCode": "7308*", "colour": "red"})
    assert excinfo.value.field == "colour"


def test_set_filters_are_deduplicated_sorted_and_uppercased():
    query = normalize_query({"originCountries": ["us", "CN", "US", " cn "], "portsOfLoading": "cnsha"})

    assert query.origin_countries == ("CN", "US")
    assert query.ports_of_loading == ("CNSHA",)


def test_equal_filters_give_equal_cache_keys():
    first = normalize_query({"originCountries": ["US", "CN"], "productKeyword": "Steel  Beam"})
    second = normalize_query({"productKeyword": " steel beam ", "originCountries": ["cn", "us", "us"]})

    assert first == second
    assert first.cache_key() == second.cache_key()
    assert first.cache_key() != normalize_query({"originCountries": ["US"]}).cache_key()


def test_free_text_is_collapsed_and_lowercased():
    query = normalize_query({"productKeyword": "  Steel \t  Beam ", "carrier": "COSCO"})

    assert query.product_keyword == "steel beam"
    assert query.carrier == "cosco"


def test_text_length_limit():
    with pytest.raises(ValidationError) as excinfo:
        normalize_query({"shipperName": "x" * 201})
    assert excinfo.value.field == "shipperName"


def test_invalid_country_code():
    with pytest.raises(ValidationError) as excinfo:
        normalize_query({"destinationCountries": ["USA"]})
    assert excinfo.value.field == "destinationCountries"


def test_too_many_country_codes():
    codes = [f"{chr(65 + i // 26)}{chr(65 + i % 26)}" for i in range(51)]
    with pytest.raises(ValidationError) as excinfo:
        normalize_query({"originCountries": codes})
    assert excinfo.value.field == "originCountries"


@pytest.mark.parametrize(
    "low, high",
    [("minQuantity", "maxQuantity"), ("minValueUsd", "maxValueUsd"), ("minUnitPrice", "maxUnitPrice")],
)
def test_inverted_numeric_ranges(low, high):
    with pytest.raises(ValidationError) as excinfo:
        normalize_query({low: 10, high: 5})
    assert excinfo.value.field == low


def test_equal_range_bounds_are_allowed():
    query = normalize_query({"minValueUsd": 100, "maxValueUsd": "100"})
    assert query.min_value_usd == query.max_value_usd == 100.0


@pytest.mark.parametrize("value", [-1, "abc", True, float("nan")])
def test_numeric_filters_must_be_non_negative_numbers(value):
    with pytest.raises(ValidationError) as excinfo:
        normalize_query({"minQuantity": value})
    assert excinfo.value.field == "minQuantity"


def test_dates_parse_and_must_be_ordered():
    query = normalize_query({"dateFrom": "2025-01-01", "dateTo": "2025-12-31T23:59:59Z"})
    assert query.date_from == date(2025, 1, 1)
    assert query.date_to == date(2025, 12, 31)

    with pytest.raises(ValidationError) as excinfo:
        normalize_query({"dateFrom": "2025-06-01", "dateTo": "2025-01-01"})
    assert excinfo.value.field == "dateFrom"

    with pytest.raises(ValidationError) as excinfo:
        normalize_query({"dateTo": "last tuesday"})
    assert excinfo.value.field == "dateTo"


@pytest.mark.parametrize("page_size", [0, 101, -5])
def test_page_size_bounds(page_size):
    with pytest.raises(ValidationError) as excinfo:
        normalize_query({"pageSize": page_size})
    assert excinfo.value.field == "pageSize"


def test_page_must_be_positive_integer():
    assert normalize_query({"page": 3, "pageSize": 100}).page == 3
    for bad in (0, 1.5, True, "two"):
        with pytest.raises(ValidationError) as excinfo:
            normalize_query({"page": bad})
        assert excinfo.value.field == "page"


def test_transport_mode_and_sorting():
    query = normalize_query({"transportMode": "sea", "sortBy": "declaredValueUsd", "sortOrder": "ASC"})
    assert query.transport_mode == "SEA"
    assert query.sort_by == "declaredValueUsd"
    assert query.sort_order == "asc"

    with pytest.raises(ValidationError):
        normalize_query({"transportMode": "BOAT"})
    with pytest.raises(ValidationError) as excinfo:
        normalize_query({"sortBy": "carrier"})
    assert excinfo.value.field == "sortBy"


def test_excluded_company_ids_are_trimmed_and_sorted():
    query = normalize_query({"excludeCompanyIds": [" C-B ", "C-A", "C-B", ""]})
    assert query.exclude_company_ids == ("C-A", "C-B")

from __future__ import annotations

import pytest

from tradescope.errors import InsufficientTier, NotFound, ValidationError
from tradescope.tiers import Tier


def _ids(result):
    return [item.id for item in result.items]


def test_prefix_search_matches_heading(search_service, orgs):
    result = search_service.search(orgs[Tier.STARTER], {"hsCode": "7308*", "pageSize": 100})

    assert result.total == 5
    assert sorted(_ids(result)) == ["SHP-001", "SHP-002", "SHP-003", "SHP-006", "SHP-007"]


def test_exact_code_does_not_match_longer_codes(search_service, orgs):
    result = search_service.search(orgs[Tier.STARTER], {"hsCode": "730890"})

    assert sorted(_ids(result)) == ["SHP-001", "SHP-006", "SHP-007"]


def test_adding_filters_only_narrows(search_service, orgs):
    org = orgs[Tier.STARTER]
    steps = [
        {"hsCode": "73*"},
        {"hsCode": "73*", "originCountries": ["CN"]},
        {"hsCode": "73*", "originCountries": ["CN"], "destinationCountries": ["US"]},
        {"hsCode": "73*", "originCountries": ["CN"], "destinationCountries": ["US"], "minValueUsd": 7000},
    ]
    totals = [search_service.search(org, raw).total for raw in steps]

    assert totals == sorted(totals, reverse=True)
    assert totals[-1] == 1


def test_default_sort_is_newest_first(search_service, orgs):
    result = search_service.search(orgs[Tier.STARTER], {"hsCode": "7308*"})

    assert _ids(result)[0] == "SHP-007"
    dates = [item.shipment_date for item in result.items]
    assert dates == sorted(dates, reverse=True)


def test_sort_places_missing_values_last(search_service, orgs):
    result = search_service.search(
        orgs[Tier.STARTER], {"hsCode": "7308*", "sortBy": "declaredValueUsd", "sortOrder": "asc"}
    )

    assert _ids(result) == ["SHP-006", "SHP-002", "SHP-001", "SHP-003", "SHP-007"]


def test_pagination_and_out_of_range_page(search_service, orgs):
    org = orgs[Tier.STARTER]
    first = search_service.search(org, {"hsCode": "7308*", "pageSize": 2})
    last = search_service.search(org, {"hsCode": "7308*", "pageSize": 2, "page": 3})
    beyond = search_service.search(org, {"hsCode": "7308*", "pageSize": 2, "page": 4})

    assert first.total_pages == 3
    assert len(first.items) == 2
    assert len(last.items) == 1
    assert beyond.items == ()
    assert beyond.total == 5
    assert beyond.to_dict()["totalPages"] == 3


def test_no_matches(search_service, orgs):
    result = search_service.search(orgs[Tier.STARTER], {"hsCode": "0901*"})

    assert result.total == 0
    assert result.total_pages == 0
    assert result.items == ()


def test_excluded_companies_drop_either_party(search_service, orgs):
    result = search_service.search(orgs[Tier.STARTER], {"hsCode": "7308*", "excludeCompanyIds": ["C-BOLT"]})

    assert _ids(result) == ["SHP-003"]


def test_keyword_requires_every_token(search_service, orgs):
    result = search_service.search(orgs[Tier.STARTER], {"productKeyword": "Steel BEAM"})

    assert sorted(_ids(result)) == ["SHP-001", "SHP-006", "SHP-007"]


def test_facet_counts_sum_to_total(search_service, orgs):
    result = search_service.search(orgs[Tier.STARTER], {"hsCode": "73*"})
    facets = result.aggregations.facets

    assert sum(bucket.count for bucket in facets["byOriginCountry"]) == result.total
    assert sum(bucket.count for bucket in facets["byTransportMode"]) == result.total
    assert facets["byOriginCountry"][0].key == "CN"
    assert facets["byOriginCountry"][0].label == "China"
    assert facets["byHsChapter"][0].label == "Chapter 73"
    # SHP-006 and SHP-007 have no carrier
    assert sum(bucket.count for bucket in facets["byCarrier"]) == result.total - 2


def test_value_range_ignores_missing_values(search_service, orgs):
    result = search_service.search(orgs[Tier.STARTER], {"hsCode": "7308*"})
    value_range = result.aggregations.ranges["valueRange"]

    assert value_range.sample_size == 4
    assert value_range.min == 4500.0
    assert value_range.max == 15000.0
    assert value_range.avg == 8875.0


def test_aggregations_can_be_skipped(search_service, orgs):
    result = search_service.search(orgs[Tier.STARTER], {"hsCode": "7308*", "includeAggregations": False})

    assert result.aggregations is None
    assert result.to_dict()["aggregations"] is None


def test_validation_errors_surface_before_execution(search_service, orgs):
    with pytest.raises(ValidationError) as excinfo:
        search_service.search(orgs[Tier.STARTER], {"hsCode": "73**08"})
    assert excinfo.value.field == "hsCode"


def test_find_by_id(search_service, orgs):
    org = orgs[Tier.STARTER]
    assert search_service.find_by_id(org, "SHP-004").consignee_id == "C-BOLT"

    with pytest.raises(NotFound):
        search_service.find_by_id(org, "SHP-999")
    with pytest.raises(NotFound):
        search_service.find_by_id(org, "../etc/passwd")


def test_find_by_company_roles(search_service, orgs):
    org = orgs[Tier.STARTER]

    as_shipper = search_service.find_by_company(org, "C-ACME", role="shipper")
    as_consignee = search_service.find_by_company(org, "C-BOLT", role="consignee")
    either = search_service.find_by_company(org, "C-BOLT", role="both", page_size=2)

    assert as_shipper.total == 4
    assert as_consignee.total == 4
    assert either.total == 5
    assert len(either.items) == 2
    assert either.total_pages == 3
    with pytest.raises(ValidationError) as excinfo:
        search_service.find_by_company(org, "C-BOLT", role="broker")
    assert excinfo.value.field == "role"


def test_route_analytics_requires_pro(search_service, orgs):
    with pytest.raises(InsufficientTier) as excinfo:
        search_service.route_analytics(orgs[Tier.STARTER], "7308")
    assert excinfo.value.required_tier == "PRO"


def test_route_analytics_groups_by_port_pair(search_service, orgs):
    routes = search_service.route_analytics(orgs[Tier.PRO], "7308")

    assert [(r["portOfLoading"], r["portOfDischarge"]) for r in routes] == [
        ("CNSHA", "USLAX"),
        ("CNNGB", "DEHAM"),
        ("USSEA", "CAVAN"),
    ]
    top = routes[0]
    assert top["shipmentCount"] == 3
    assert top["totalValueUsd"] == 16000.0
    assert top["topShippers"] == [{"name": "Acme Steel Works", "shipmentCount": 3}]


def test_route_analytics_date_window(search_service, orgs):
    routes = search_service.route_analytics(orgs[Tier.PRO], "7308", "2025-07-01", "2025-12-31")

    assert {(r["portOfLoading"], r["portOfDischarge"]) for r in routes} == {("CNNGB", "DEHAM"), ("USSEA", "CAVAN")}
    with pytest.raises(ValidationError):
        search_service.route_analytics(orgs[Tier.PRO], "7308", "2025-12-31", "2025-01-01")


def test_price_distribution(search_service, orgs):
    stats = search_service.price_distribution(orgs[Tier.PRO], "7308")

    assert stats["sampleSize"] == 4
    assert stats["min"] == 100.0
    assert stats["max"] == 750.0
    assert stats["median"] == 135.0
    assert stats["hsCode"] == "7308"


def test_price_distribution_without_data(search_service, orgs):
    stats = search_service.price_distribution(orgs[Tier.PRO], "0901", destination_country="us")

    assert stats["sampleSize"] == 0
    assert stats["destinationCountry"] == "US"

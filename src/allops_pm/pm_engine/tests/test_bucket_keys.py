from datetime import date, datetime

import pytest

from allops_pm.pm_engine.services.bucket_keys import (
    API_RESPONSE_RULE,
    CONTENT_SIZING_RULE,
    OTHER_APP_RESPONSE_RULE,
    Granularity,
    derive_batch_bucket,
    derive_bucket,
    parse_date_value,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-03-15", date(2024, 3, 15)),
        ("2024-3", date(2024, 3, 1)),
        ("2024/03", date(2024, 3, 1)),
        ("2024/3/7", date(2024, 3, 7)),
        ("2024-03-15T10:20:30Z", date(2024, 3, 15)),
        ("  2024-03  ", date(2024, 3, 1)),
        ("15/03/2024", date(2024, 3, 15)),
        ("15.03.2024", date(2024, 3, 15)),
        ("Mar 2024", date(2024, 3, 1)),
        ("March 15, 2024", date(2024, 3, 15)),
        ("20240315", date(2024, 3, 15)),
        ("Fri, 15 Mar 2024 10:00:00 +0000", date(2024, 3, 15)),
        ("1710460800", date(2024, 3, 15)),
        ("1710460800000", date(2024, 3, 15)),
        (1710460800, date(2024, 3, 15)),
        (1710460800000, date(2024, 3, 15)),
        (1710460800.7, date(2024, 3, 15)),
        ("202405", date(2024, 5, 1)),
        (202405, date(2024, 5, 1)),
        (20240315, date(2024, 3, 15)),
        (datetime(2024, 3, 15, 8, 0), date(2024, 3, 15)),
        (date(2024, 3, 15), date(2024, 3, 15)),
    ],
)
def test_parse_date_value_supported_shapes(value, expected):
    assert parse_date_value(value, Granularity.MONTH) == expected


@pytest.mark.parametrize(
    "value",
    [
        None,
        "",
        "   ",
        "not a date",
        "2024-13",
        True,
        False,
        0,
        -5,
        {"y": 2024},
        ["2024-01"],
        202413,
        12345,
        123456789,
        float("nan"),
    ],
)
def test_parse_date_value_unparseable(value):
    assert parse_date_value(value) is None


def test_day_granularity_requires_day_in_prefix():
    assert parse_date_value("2024/3/7", Granularity.DAY) == date(2024, 3, 7)
    assert parse_date_value("2024/3", Granularity.DAY) is None


def test_numeric_compact_month_is_not_an_epoch():
    assert derive_bucket({"year_month_file": 202405}, CONTENT_SIZING_RULE) == "2024-05"
    assert derive_batch_bucket([{"api_date": 20240315}], API_RESPONSE_RULE) == "2024-03-15"


def test_content_sizing_prefers_earlier_fields():
    record = {"date": "2024-01-05", "year_month": "2024-02"}
    assert derive_bucket(record, CONTENT_SIZING_RULE) == "2024-02"


def test_unparseable_field_falls_through_to_next():
    record = {"yearMonth": "garbage", "date": "2024-07-01"}
    assert derive_bucket(record, CONTENT_SIZING_RULE) == "2024-07"


def test_field_lookup_is_case_insensitive():
    assert derive_bucket({"API_DATE": "2024-05-06"}, API_RESPONSE_RULE) == "2024-05-06"


def test_api_response_uses_first_record_and_day_bucket():
    records = [{"api_date": "2024-01-02T23:59:00"}, {"api_date": "2024-01-03"}]
    assert derive_batch_bucket(records, API_RESPONSE_RULE) == "2024-01-02"


def test_unknown_bucket_without_fallback():
    assert derive_bucket({"value": 1}, CONTENT_SIZING_RULE) is None
    assert derive_batch_bucket([{"value": 1}], API_RESPONSE_RULE) is None
    assert derive_bucket("not a mapping", CONTENT_SIZING_RULE) is None


def test_other_app_response_uses_last_record():
    records = [{"date": "2024-01-01"}, {"date": "2024-02-01"}]
    assert derive_batch_bucket(records, OTHER_APP_RESPONSE_RULE) == "2024-02"


def test_other_app_response_falls_back_to_current_month():
    today = date(2026, 10, 18)
    assert derive_batch_bucket([{"x": 1}], OTHER_APP_RESPONSE_RULE, today=today) == "2026-10"
    assert derive_batch_bucket([], OTHER_APP_RESPONSE_RULE, today=today) == "2026-10"

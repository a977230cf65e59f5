from __future__ import annotations

from datetime import UTC, datetime, timedelta

from mdm_shared.timezone import CANONICAL_TZ, isoformat, now_canonical, parse_report_timestamp, to_canonical


def test_now_is_on_canonical_offset() -> None:
    assert now_canonical().utcoffset() == timedelta(hours=5, minutes=30)


def test_naive_values_are_tagged_not_shifted() -> None:
    naive = datetime(2025, 3, 1, 10, 0, 0)
    tagged = to_canonical(naive)
    assert tagged.hour == 10
    assert tagged.tzinfo is CANONICAL_TZ


def test_aware_values_are_converted() -> None:
    value = datetime(2025, 3, 1, 10, 0, 0, tzinfo=UTC)
    converted = to_canonical(value)
    assert converted.hour == 15
    assert converted.minute == 30
    assert converted == value


def test_report_timestamp_without_offset_is_utc() -> None:
    fallback = now_canonical()
    parsed = parse_report_timestamp("2025-03-01T10:00:00", fallback)
    assert parsed == datetime(2025, 3, 1, 10, 0, 0, tzinfo=UTC)
    assert isoformat(parsed) == "2025-03-01T15:30:00+05:30"


def test_report_timestamp_fallbacks() -> None:
    fallback = datetime(2025, 1, 1, 0, 0, 0, tzinfo=UTC)
    assert parse_report_timestamp(None, fallback) == fallback
    assert parse_report_timestamp("   ", fallback) == fallback
    assert parse_report_timestamp("yesterday", fallback) == fallback
    assert parse_report_timestamp("yesterday", fallback).tzinfo is CANONICAL_TZ


def test_isoformat_none() -> None:
    assert isoformat(None) is None


def test_report_timestamp_ahead_of_receipt_is_clamped() -> None:
    received = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)
    skew = timedelta(minutes=5)
    slightly_ahead = parse_report_timestamp("2025-06-01T12:04:00+00:00", received, max_future_skew=skew)
    assert slightly_ahead == datetime(2025, 6, 1, 12, 4, 0, tzinfo=UTC)

    far_ahead = parse_report_timestamp("2035-06-01T12:00:00+00:00", received, max_future_skew=skew)
    assert far_ahead == received
    assert far_ahead.tzinfo is CANONICAL_TZ

    assert parse_report_timestamp("2035-06-01T12:00:00+00:00", received).year == 2035

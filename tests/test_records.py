from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from airspace.exceptions import MalformedRecordError
from airspace.tracking.records import (
    ContactRecord,
    ContactStatus,
    RetentionPolicy,
    parse_timestamp,
    records_from_json,
)

from conftest import T0

BERLIN = ZoneInfo("Europe/Berlin")


def test_status_parse_accepts_legacy_labels():
    assert ContactStatus.parse("Im Luftraum") is ContactStatus.ACTIVE
    assert ContactStatus.parse("Vergangen") is ContactStatus.PAST
    assert ContactStatus.parse("active") is ContactStatus.ACTIVE
    with pytest.raises(MalformedRecordError):
        ContactStatus.parse("landed")


def test_parse_timestamp_iso_and_time_of_day():
    assert parse_timestamp("2024-05-03T18:00:00Z", T0) == T0

    # T0 is 20:00 in Berlin; 19:30 is earlier the same day
    assert parse_timestamp("19:30", T0, BERLIN) == T0 - timedelta(minutes=30)
    # 21:00 has not happened yet today, so it refers to yesterday
    assert parse_timestamp("21:00", T0, BERLIN) == T0 + timedelta(hours=1) - timedelta(days=1)


@pytest.mark.parametrize("value", ["", "25:00", "yesterday", None, 42])
def test_parse_timestamp_rejects_garbage(value):
    with pytest.raises(MalformedRecordError):
        parse_timestamp(value, T0)


def test_record_dict_round_trip():
    record = ContactRecord(
        first_time=T0,
        status=ContactStatus.PAST,
        direction="NE",
        last_seen_at=T0 + timedelta(minutes=1),
        last_active_at=T0 + timedelta(minutes=1),
    )
    assert ContactRecord.from_dict(record.to_dict(), T0) == record


def test_records_from_json_migrates_legacy_values():
    raw = {
        "DLH4AB": "19:30",
        "EZY12": "19:45",
        "EZY12_status": "Vergangen",
        "AFR1": {"firstTime": "2024-05-03T17:00:00+00:00", "status": "Im Luftraum"},
        "BROKEN": {"status": "active"},
        "ODD": 17,
    }

    records = records_from_json(raw, T0, BERLIN)

    assert set(records) == {"DLH4AB", "EZY12", "AFR1"}
    assert records["DLH4AB"].status is ContactStatus.ACTIVE
    assert records["DLH4AB"].first_time == T0 - timedelta(minutes=30)
    assert records["EZY12"].status is ContactStatus.PAST
    assert records["AFR1"].status is ContactStatus.ACTIVE
    assert records["AFR1"].direction is None


def _past(first_minutes_ago, active_minutes_ago=None):
    active = T0 - timedelta(minutes=active_minutes_ago) if active_minutes_ago is not None else None
    return ContactRecord(
        first_time=T0 - timedelta(minutes=first_minutes_ago),
        status=ContactStatus.PAST,
        last_active_at=active,
    )


def test_retention_policy_count_cap_keeps_newest_past():
    records = {f"P{i}": _past(first_minutes_ago=i) for i in range(10)}
    records["ACTIVE"] = ContactRecord(first_time=T0 - timedelta(hours=5), status=ContactStatus.ACTIVE)

    evicted = RetentionPolicy(max_past_records=7, max_past_age=None).select_evictions(records, T0)

    assert sorted(evicted) == ["P7", "P8", "P9"]


def test_retention_policy_age_cap_uses_last_active():
    records = {
        "FRESH": _past(first_minutes_ago=60, active_minutes_ago=5),
        "STALE": _past(first_minutes_ago=20, active_minutes_ago=11),
        "NEVER_ACTIVE": _past(first_minutes_ago=30),
    }
    policy = RetentionPolicy(max_past_records=7, max_past_age=timedelta(minutes=10))

    assert sorted(policy.select_evictions(records, T0)) == ["NEVER_ACTIVE", "STALE"]
    assert not policy.is_expired(records["FRESH"], T0)


def test_retention_policy_age_cap_prefers_last_snapshot():
    record = _past(first_minutes_ago=40, active_minutes_ago=30)
    record.last_seen_at = T0 - timedelta(minutes=2)
    policy = RetentionPolicy(max_past_records=None, max_past_age=timedelta(minutes=10))

    assert record.retention_reference == record.last_seen_at
    assert not policy.is_expired(record, T0)
    assert policy.is_expired(record, T0 + timedelta(minutes=9))


def test_retention_policy_count_cap_spares_present_callsigns():
    records = {f"P{i}": _past(first_minutes_ago=i) for i in range(10)}
    present = {"P8", "P9"}

    evicted = RetentionPolicy(max_past_records=7, max_past_age=None).select_evictions(records, T0, present)

    assert sorted(evicted) == ["P5", "P6", "P7"]


def test_retention_policy_from_minutes_zero_disables_age_cap():
    policy = RetentionPolicy.from_minutes(7, 0)
    assert policy.max_past_age is None
    assert not policy.is_expired(_past(first_minutes_ago=600), T0)

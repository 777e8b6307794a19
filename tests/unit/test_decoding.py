import math

import pytest

from multilink.decoding import (
    get_int,
    get_strict_float,
    participant_from_record,
    participant_to_record,
    participants_from_users,
    recent_session_from_record,
    session_from_record,
    session_to_record,
)
from multilink.model import SessionData, SessionParticipant


FULL_RECORD = {
    "title": "Morning ride",
    "hostId": "42",
    "hostName": "Ana",
    "joinCode": "ABCD1234",
    "fromLocation": "Harbourfront",
    "toLocation": "East Coast Park",
    "startLat": 1.2653,
    "startLng": 103.8220,
    "endLat": 1.3008,
    "endLng": 103.9122,
    "status": "Paused",
    "created": 1_700_000_000_000,
    "durationVal": "90",
    "durationUnit": "Mins",
    "isSharingAllowed": False,
    "isUsersVisible": False,
    "isHostSharing": False,
    "maxPeople": "25",
    "activeUsers": 7,
}


def test_full_record_round_trips():
    session = session_from_record(FULL_RECORD, "s1")
    assert session.id == "s1"
    assert session.title == "Morning ride"
    assert session.host_id == "42"
    assert session.join_code == "ABCD1234"
    assert session.start_lat == 1.2653
    assert session.end_lng == 103.9122
    assert session.status == "Paused"
    assert session.created_timestamp == 1_700_000_000_000
    assert session.duration_val == "90"
    assert session.duration_unit == "Mins"
    assert session.is_sharing_allowed is False
    assert session.is_users_visible is False
    assert session.is_host_sharing is False
    assert session.max_people == "25"
    assert session.active_users == 7
    assert session_to_record(session) == FULL_RECORD


def test_empty_record_yields_all_defaults():
    session = session_from_record({}, "abc")
    assert session == SessionData(id="abc")
    assert session.status == "Live"
    assert session.duration_val == "2"
    assert session.duration_unit == "Hrs"
    assert session.max_people == "10"
    assert session.is_sharing_allowed is True
    assert session.is_host_sharing is True
    assert session.is_users_visible is True
    assert session.active_users == 0
    assert session.created_timestamp == 0
    assert session.start_lat is None and session.start_lng is None
    assert session.end_lat is None and session.end_lng is None
    for text_field in ("title", "join_code", "from_location", "to_location", "host_id", "host_name"):
        assert getattr(session, text_field) == ""


def test_non_mapping_record_still_decodes():
    assert session_from_record(None, "x") == SessionData(id="x")
    assert session_from_record(["junk"], "x") == SessionData(id="x")


def test_active_users_float_truncates():
    assert session_from_record({"activeUsers": 3.9}, "s").active_users == 3


def test_active_users_negative_is_floored_to_zero():
    assert session_from_record({"activeUsers": -4}, "s").active_users == 0
    assert session_from_record({"activeUsers": -0.5}, "s").active_users == 0


@pytest.mark.parametrize("bad", ["3", True, None, math.nan, math.inf, [3]])
def test_active_users_non_numeric_defaults(bad):
    assert session_from_record({"activeUsers": bad}, "s").active_users == 0


def test_integer_coordinate_is_absent_not_zero():
    session = session_from_record({"startLat": 5, "startLng": 0, "endLat": "1.5"}, "s")
    assert session.start_lat is None
    assert session.start_lng is None
    assert session.end_lat is None


def test_float_zero_coordinate_is_kept():
    assert session_from_record({"startLat": 0.0}, "s").start_lat == 0.0


def test_mistyped_fields_fall_back_per_field():
    record = {
        "title": 12,
        "status": None,
        "maxPeople": 20,
        "durationVal": 3,
        "isSharingAllowed": "no",
        "created": "yesterday",
        "hostName": "Bo",
    }
    session = session_from_record(record, "s")
    assert session.title == ""
    assert session.status == "Live"
    assert session.max_people == "10"
    assert session.duration_val == "2"
    assert session.is_sharing_allowed is True
    assert session.created_timestamp == 0
    assert session.host_name == "Bo"


def test_created_accepts_float_millis():
    assert session_from_record({"created": 1_700_000_000_123.7}, "s").created_timestamp == 1_700_000_000_123


def test_decoder_does_not_clamp_max_people():
    session = session_from_record({"maxPeople": "3", "activeUsers": 9}, "s")
    assert session.max_people == "3"
    assert session.active_users == 9

    huge = session_from_record({"maxPeople": "500"}, "s")
    assert huge.max_people == "500"


def test_decoding_is_deterministic_and_leaves_input_alone():
    record = dict(FULL_RECORD)
    first = session_from_record(record, "s")
    second = session_from_record(record, "s")
    assert first == second
    assert record == FULL_RECORD


def test_extractors_reject_bool_as_number():
    assert get_int({"n": True}, "n") is None
    assert get_strict_float({"n": 1}, "n") is None
    assert get_strict_float({"n": 1.0}, "n") == 1.0


def test_to_record_omits_unknown_coordinates():
    record = session_to_record(SessionData(id="s"))
    assert "startLat" not in record
    assert "endLng" not in record
    assert "id" not in record


def test_participant_defaults_and_numeric_leniency():
    p = participant_from_record({"id": "u1", "lat": 1, "lng": 2.5, "batteryLevel": 55.0})
    assert p.name == "User"
    assert p.lat == 1.0
    assert p.lng == 2.5
    assert p.battery_level == 55
    assert p.status == "Online"
    assert p.is_charging is False
    assert p.has_fix is True
    assert participant_from_record({}) == SessionParticipant()


def test_participant_record_round_trip():
    p = SessionParticipant(id="u", name="Cy", lat=1.5, lng=2.5, heading=90.0, speed=3.2,
                           battery_level=40, is_charging=True, status="Paused", last_updated=123)
    assert participant_from_record(participant_to_record(p)) == p


def test_users_without_id_are_dropped():
    users = {
        "a": {"id": "a", "name": "Ann"},
        "ghost": {"lat": 1.0, "lng": 2.0},
        "broken": "not-a-dict",
    }
    people = participants_from_users(users)
    assert [p.id for p in people] == ["a"]


def test_recent_session_defaults():
    rs = recent_session_from_record({"completedTimestamp": 5, "startLat": 1})
    assert rs.title == "Unnamed Session"
    assert rs.completed_timestamp == 5
    assert rs.start_lat == 1.0
    assert rs.end_lat is None

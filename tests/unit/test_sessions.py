import random

import pytest

from multilink.constants import BD_RECENT, BD_SESSIONS, RECENT_KEEP, RECENT_MAX_AGE_MS
from multilink.exceptions import (
    CapacityLimitExceeded,
    InvalidSessionSettings,
    NotParticipant,
    NotSessionHost,
    SessionFull,
    SessionNotFound,
)
from multilink.model import SessionData, UserProfile
from multilink.utils.profiles import ensure_profile, get_stats, update_profile
from multilink.utils.sessions import (
    build_ui_state,
    create_session,
    delete_recent_session,
    find_session,
    find_session_id_by_code,
    get_participants,
    get_session,
    is_participant,
    join_session,
    leave_session,
    list_recent_sessions,
    list_sessions_for_user,
    remove_participant,
    set_participant_paused,
    set_paused,
    stop_session,
    update_location,
    update_settings,
)

T0 = 1_700_000_000_000
HOST = UserProfile(id="1", name="Host", created_at=T0)
ANA = UserProfile(id="2", name="Ana", created_at=T0)
BEN = UserProfile(id="3", name="Ben", created_at=T0)


def _draft(**kw):
    base = dict(
        title="Ride",
        from_location="A",
        to_location="B",
        start_lat=1.30,
        start_lng=103.80,
        end_lat=1.31,
        end_lng=103.80,
        max_people="3",
    )
    base.update(kw)
    return SessionData(**base)


def _create(bot_data, **kw):
    return create_session(bot_data, HOST, _draft(**kw), now=T0, limit=50, rng=random.Random(7))


def test_create_session_stores_live_record_and_joins_host():
    bot_data = {}
    session = _create(bot_data)
    assert session.status == "Live"
    assert session.host_id == "1"
    assert session.host_name == "Host"
    assert len(session.join_code) == 8
    assert session.created_timestamp == T0
    assert session.active_users == 1
    record = bot_data[BD_SESSIONS][session.id]
    assert record["joinCode"] == session.join_code
    assert "1" in record["users"]
    assert get_stats(bot_data, "1").total_sessions == 1


def test_create_without_host_sharing_leaves_host_out():
    bot_data = {}
    session = _create(bot_data, is_host_sharing=False)
    assert session.active_users == 0
    assert get_participants(bot_data, session.id) == []


def test_create_rejects_or_clamps_capacity():
    with pytest.raises(CapacityLimitExceeded):
        create_session({}, HOST, _draft(max_people="60"), now=T0, limit=50, policy="reject")
    session = create_session({}, HOST, _draft(max_people="60"), now=T0, limit=50, policy="clamp")
    assert session.max_people == "50"


def test_find_by_code_is_case_insensitive():
    bot_data = {}
    session = _create(bot_data)
    assert find_session_id_by_code(bot_data, session.join_code.lower()) == session.id
    assert find_session_id_by_code(bot_data, "NOPE") is None
    assert find_session_id_by_code(bot_data, "") is None


def test_join_counts_and_enforces_capacity():
    bot_data = {}
    session = _create(bot_data)  # capacity 3, host already in
    join_session(bot_data, session.id, ANA, now=T0 + 1, limit=50)
    join_session(bot_data, session.id, BEN, now=T0 + 2, limit=50)
    assert get_session(bot_data, session.id).active_users == 3

    with pytest.raises(SessionFull) as exc:
        join_session(bot_data, session.id, UserProfile(id="4", name="Cy"), now=T0 + 3, limit=50)
    assert exc.value.capacity == 3


def test_rejoin_does_not_take_a_seat():
    bot_data = {}
    session = _create(bot_data, max_people="2")
    join_session(bot_data, session.id, ANA, now=T0 + 1, limit=50)
    again = join_session(bot_data, session.id, ANA, now=T0 + 5, limit=50)
    assert again.last_updated == T0 + 5
    assert get_session(bot_data, session.id).active_users == 2
    assert get_stats(bot_data, "2").total_sessions == 1


def test_join_unknown_session():
    with pytest.raises(SessionNotFound):
        join_session({}, "missing", ANA, now=T0, limit=50)


def test_update_location_derives_speed():
    bot_data = {}
    session = _create(bot_data)
    join_session(bot_data, session.id, ANA, now=T0, limit=50)
    update_location(bot_data, session.id, "2", 1.30, 103.80, now=T0 + 1_000)
    p = update_location(bot_data, session.id, "2", 1.3001, 103.80, now=T0 + 11_000, heading=45)
    assert p.lat == 1.3001
    assert p.heading == 45.0
    assert p.speed == pytest.approx(1.11, rel=0.02)
    assert p.last_updated == T0 + 11_000


def test_update_location_ignored_when_paused_or_sharing_off():
    bot_data = {}
    session = _create(bot_data)
    join_session(bot_data, session.id, ANA, now=T0, limit=50)
    set_paused(bot_data, session.id, "1", True)
    assert update_location(bot_data, session.id, "2", 1.0, 2.0, now=T0 + 1) is None

    set_paused(bot_data, session.id, "1", False)
    update_settings(bot_data, session.id, "1", now=T0, limit=50, is_sharing_allowed=False)
    assert update_location(bot_data, session.id, "2", 1.0, 2.0, now=T0 + 2) is None
    assert update_location(bot_data, session.id, "1", 1.0, 2.0, now=T0 + 3) is not None


def test_update_location_requires_membership():
    bot_data = {}
    session = _create(bot_data)
    with pytest.raises(NotParticipant):
        update_location(bot_data, session.id, "99", 1.0, 2.0, now=T0)


def test_only_host_can_pause_or_stop():
    bot_data = {}
    session = _create(bot_data)
    join_session(bot_data, session.id, ANA, now=T0, limit=50)
    with pytest.raises(NotSessionHost):
        set_paused(bot_data, session.id, "2", True)
    with pytest.raises(NotSessionHost):
        stop_session(bot_data, session.id, now=T0, user_id="2")
    assert set_paused(bot_data, session.id, "1", True).status == "Paused"


def test_capacity_cannot_drop_below_current_members():
    bot_data = {}
    session = _create(bot_data, max_people="5")
    join_session(bot_data, session.id, ANA, now=T0, limit=50)
    join_session(bot_data, session.id, BEN, now=T0, limit=50)
    with pytest.raises(InvalidSessionSettings):
        update_settings(bot_data, session.id, "1", now=T0, limit=50, max_people="2")
    assert update_settings(bot_data, session.id, "1", now=T0, limit=50, max_people="3").max_people == "3"


def test_host_sharing_toggle_adds_and_removes_host():
    bot_data = {}
    ensure_profile(bot_data, "1", "Host", T0)
    session = _create(bot_data)
    update_settings(bot_data, session.id, "1", now=T0, limit=50, is_host_sharing=False)
    assert [p.id for p in get_participants(bot_data, session.id)] == []
    update_settings(bot_data, session.id, "1", now=T0, limit=50, is_host_sharing=True)
    assert [p.id for p in get_participants(bot_data, session.id)] == ["1"]


def test_visibility_applies_to_participant_listing():
    bot_data = {}
    session = _create(bot_data, max_people="5", is_users_visible=False)
    join_session(bot_data, session.id, ANA, now=T0, limit=50)
    join_session(bot_data, session.id, BEN, now=T0, limit=50)
    assert {p.id for p in get_participants(bot_data, session.id, viewer_id="2")} == {"1", "2"}
    assert {p.id for p in get_participants(bot_data, session.id, viewer_id="1")} == {"1", "2", "3"}


def test_presence_refresh_on_read():
    bot_data = {}
    session = _create(bot_data)
    people = get_participants(bot_data, session.id, now=T0 + 120_000)
    assert people[0].status == "Offline"


def test_leave_archives_and_frees_seat():
    bot_data = {}
    session = _create(bot_data)
    join_session(bot_data, session.id, ANA, now=T0, limit=50)
    recent = leave_session(bot_data, session.id, "2", now=T0 + 65 * 60_000)
    assert recent.completion_reason == "You left the session"
    assert recent.duration == "1h 5m"
    assert recent.participants == "2 Users"
    assert recent.total_distance == "1.1 km"
    assert get_session(bot_data, session.id).active_users == 1
    with pytest.raises(NotParticipant):
        leave_session(bot_data, session.id, "2", now=T0)


def test_remove_participant():
    bot_data = {}
    session = _create(bot_data)
    join_session(bot_data, session.id, ANA, now=T0, limit=50)
    with pytest.raises(InvalidSessionSettings):
        remove_participant(bot_data, session.id, "1", "1", now=T0)
    recent = remove_participant(bot_data, session.id, "1", "2", now=T0)
    assert recent.completion_reason == "Removed by Admin"
    assert not any(p.id == "2" for p in get_participants(bot_data, session.id))


def test_stop_session_archives_everyone_and_deletes_record():
    bot_data = {}
    update_profile(bot_data, "1")  # no profile yet -> no-op
    ensure_profile(bot_data, "1", "Host", T0)
    update_profile(bot_data, "1", phone_number="+65 5555 0000")
    session = _create(bot_data)
    join_session(bot_data, session.id, ANA, now=T0, limit=50)

    archived = stop_session(bot_data, session.id, now=T0 + 30 * 60_000, user_id="1")
    assert sorted(archived) == ["1", "2"]
    assert find_session(bot_data, session.id) is None

    host_recent = list_recent_sessions(bot_data, "1", now=T0 + 30 * 60_000)[0]
    ana_recent = list_recent_sessions(bot_data, "2", now=T0 + 30 * 60_000)[0]
    assert host_recent.completion_reason == "You ended the session"
    assert ana_recent.completion_reason == "Ended by Admin"
    assert ana_recent.host_phone == "+65 5555 0000"
    assert ana_recent.host_email == "Not Shared"
    assert ana_recent.duration == "30m"
    assert get_stats(bot_data, "2").total_time_seconds == 1800


def test_stop_with_reason_for_expiry():
    bot_data = {}
    session = _create(bot_data)
    stop_session(bot_data, session.id, now=T0, reason="Session expired")
    assert list_recent_sessions(bot_data, "1", now=T0)[0].completion_reason == "Session expired"


def test_recent_history_keeps_newest_and_drops_old():
    bot_data = {}
    for i in range(RECENT_KEEP + 2):
        session = _create(bot_data)
        stop_session(bot_data, session.id, now=T0 + i * 1000, user_id="1")
    recents = list_recent_sessions(bot_data, "1", now=T0 + 20_000)
    assert len(recents) == RECENT_KEEP
    assert recents[0].completed_timestamp == T0 + (RECENT_KEEP + 1) * 1000

    later = T0 + RECENT_MAX_AGE_MS + 5_000
    assert len(list_recent_sessions(bot_data, "1", now=later)) == RECENT_KEEP - 3


def test_broken_recent_entries_are_dropped():
    bot_data = {BD_RECENT: {"1": {"x": "garbage"}}}
    assert list_recent_sessions(bot_data, "1", now=T0) == []
    assert bot_data[BD_RECENT]["1"] == {}


def test_delete_recent_session():
    bot_data = {}
    session = _create(bot_data)
    stop_session(bot_data, session.id, now=T0, user_id="1")
    assert delete_recent_session(bot_data, "1", session.id) is True
    assert delete_recent_session(bot_data, "1", session.id) is False


def test_ui_state_projection():
    bot_data = {}
    first = _create(bot_data)
    second = create_session(bot_data, ANA, _draft(), now=T0 + 10, limit=50)
    join_session(bot_data, second.id, HOST, now=T0 + 11, limit=50)
    set_paused(bot_data, first.id, "1", True)

    state = build_ui_state(bot_data, "1")
    assert [s.id for s in state.sessions] == [second.id, first.id]
    assert [s.id for s in state.active_sessions] == [second.id]
    assert state.is_loading is False
    assert state.error is None
    assert list_sessions_for_user(bot_data, "3") == []


def test_paused_participant_fixes_are_ignored():
    bot_data = {}
    session = _create(bot_data)
    join_session(bot_data, session.id, ANA, now=T0, limit=50)
    assert set_participant_paused(bot_data, session.id, "2", True).status == "Paused"
    assert update_location(bot_data, session.id, "2", 1.0, 2.0, now=T0 + 1) is None
    set_participant_paused(bot_data, session.id, "2", False)
    assert update_location(bot_data, session.id, "2", 1.0, 2.0, now=T0 + 2) is not None
    assert is_participant(bot_data, session.id, 2) is True
    assert is_participant(bot_data, "missing", "2") is False


def test_refused_host_sharing_toggle_leaves_record_unchanged():
    bot_data = {}
    session = _create(bot_data, max_people="2", is_host_sharing=False)
    join_session(bot_data, session.id, ANA, now=T0, limit=50)
    join_session(bot_data, session.id, BEN, now=T0, limit=50)

    with pytest.raises(SessionFull):
        update_settings(bot_data, session.id, "1", now=T0, limit=50, is_host_sharing=True, is_users_visible=False)

    record = bot_data[BD_SESSIONS][session.id]
    assert record["isHostSharing"] is False
    assert record["isUsersVisible"] is True
    assert "1" not in record["users"]

    # Raising capacity in the same call makes room for the host
    updated = update_settings(bot_data, session.id, "1", now=T0, limit=50, is_host_sharing=True, max_people="3")
    assert updated.is_host_sharing is True
    assert updated.active_users == 3


def test_host_cannot_leave_own_session():
    bot_data = {}
    session = _create(bot_data)
    with pytest.raises(InvalidSessionSettings):
        leave_session(bot_data, session.id, "1", now=T0)
    assert get_session(bot_data, session.id).status == "Live"
    assert [p.id for p in get_participants(bot_data, session.id)] == ["1"]
    assert list_recent_sessions(bot_data, "1", now=T0) == []

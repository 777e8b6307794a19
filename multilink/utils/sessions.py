"""Session membership on top of the shared record store (``bot_data``).

Records are kept in the same shape the remote store uses: a dict per
session with camelCase keys and a nested ``users`` dict of participant
records. Reads always go through the defaulted decoders.
"""

import logging
import random
import uuid
from dataclasses import replace
from typing import Any, Dict, List, Optional

from multilink.constants import (
    BD_RECENT,
    BD_SESSIONS,
    PARTICIPANT_ONLINE,
    PARTICIPANT_PAUSED,
    REASON_ADMIN_ENDED,
    REASON_HOST_ENDED,
    REASON_LEFT,
    REASON_REMOVED,
    RECENT_KEEP,
    RECENT_MAX_AGE_MS,
    STATUS_COMPLETED,
    STATUS_LIVE,
    STATUS_PAUSED,
)
from multilink.decoding import (
    participant_from_record,
    participant_to_record,
    participants_from_users,
    recent_session_from_record,
    recent_session_to_record,
    session_from_record,
    session_to_record,
)
from multilink.exceptions import (
    InvalidSessionSettings,
    NotParticipant,
    NotSessionHost,
    SessionEnded,
    SessionFull,
    SessionNotFound,
)
from multilink.model import (
    MultiLinkUiState,
    RecentSession,
    SessionData,
    SessionParticipant,
    UserProfile,
)
from multilink.policy import (
    POLICY_REJECT,
    DEFAULT_OFFLINE_THRESHOLD_MS,
    accepts_location_updates,
    can_accept_participant,
    effective_capacity,
    refresh_presence,
    resolve_max_people,
    visible_participants,
)
from multilink.utils.geo import format_distance, route_distance_m, speed_mps
from multilink.utils.join_codes import generate_unique_join_code, normalize_code
from multilink.utils.profiles import add_stats, get_profile
from multilink.utils.time_utils import format_completed_date, format_elapsed

logger = logging.getLogger(__name__)

NOT_SHARED = "Not Shared"


def _sessions(bot_data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    return bot_data.setdefault(BD_SESSIONS, {})


def _record(bot_data: Dict[str, Any], session_id: str) -> Dict[str, Any]:
    record = _sessions(bot_data).get(session_id)
    if not isinstance(record, dict):
        raise SessionNotFound(session_id)
    return record


def _users(record: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    users = record.get("users")
    if not isinstance(users, dict):
        users = {}
        record["users"] = users
    return users


def _sync_active_users(record: Dict[str, Any]) -> int:
    count = len(participants_from_users(_users(record)))
    record["activeUsers"] = count
    return count


def _require_host(session: SessionData, user_id: str) -> None:
    if session.host_id != str(user_id):
        raise NotSessionHost(session.id)


def _require_open(session: SessionData) -> None:
    if session.is_terminal:
        raise SessionEnded(session.id)


# -------- Lookups --------
def find_session(bot_data: Dict[str, Any], session_id: str) -> Optional[SessionData]:
    record = _sessions(bot_data).get(session_id)
    if not isinstance(record, dict):
        return None
    return session_from_record(record, session_id)


def get_session(bot_data: Dict[str, Any], session_id: str) -> SessionData:
    return session_from_record(_record(bot_data, session_id), session_id)


def find_session_id_by_code(bot_data: Dict[str, Any], code: str) -> Optional[str]:
    wanted = normalize_code(code)
    if not wanted:
        return None
    for sid, record in _sessions(bot_data).items():
        if isinstance(record, dict) and normalize_code(str(record.get("joinCode", ""))) == wanted:
            return sid
    return None


def get_participants(
    bot_data: Dict[str, Any],
    session_id: str,
    viewer_id: Optional[str] = None,
    now: Optional[int] = None,
    offline_after_ms: int = DEFAULT_OFFLINE_THRESHOLD_MS,
) -> List[SessionParticipant]:
    record = _record(bot_data, session_id)
    people = participants_from_users(_users(record))
    if now is not None:
        people = refresh_presence(people, now, offline_after_ms)
    if viewer_id is not None:
        people = visible_participants(session_from_record(record, session_id), people, str(viewer_id))
    return people


def is_participant(bot_data: Dict[str, Any], session_id: str, user_id) -> bool:
    record = _sessions(bot_data).get(session_id)
    if not isinstance(record, dict):
        return False
    return str(user_id) in _users(record)


def list_sessions_for_user(bot_data: Dict[str, Any], user_id) -> List[SessionData]:
    uid = str(user_id)
    found = []
    for sid, record in _sessions(bot_data).items():
        if not isinstance(record, dict):
            continue
        session = session_from_record(record, sid)
        if session.host_id == uid or uid in _users(record):
            found.append(session)
    found.sort(key=lambda s: s.created_timestamp, reverse=True)
    return found


def build_ui_state(bot_data: Dict[str, Any], user_id) -> MultiLinkUiState:
    sessions = list_sessions_for_user(bot_data, user_id)
    return MultiLinkUiState(
        sessions=sessions,
        active_sessions=[s for s in sessions if s.is_live],
    )


# -------- Lifecycle --------
def create_session(
    bot_data: Dict[str, Any],
    host: UserProfile,
    draft: SessionData,
    now: int,
    limit: int,
    policy: str = POLICY_REJECT,
    rng: Optional[random.Random] = None,
) -> SessionData:
    """Store a new Live session built from ``draft`` and owned by ``host``."""
    max_people = resolve_max_people(draft.max_people, limit, policy)
    sessions = _sessions(bot_data)
    taken = {r.get("joinCode") for r in sessions.values() if isinstance(r, dict)}
    code = generate_unique_join_code(taken, rng=rng, clock=lambda: now)

    session_id = uuid.uuid4().hex
    session = replace(
        draft,
        id=session_id,
        host_id=host.id,
        host_name=host.name or "Unknown Host",
        join_code=code,
        status=STATUS_LIVE,
        created_timestamp=now,
        max_people=max_people,
        active_users=0,
    )
    record = session_to_record(session)
    record["users"] = {}
    sessions[session_id] = record
    logger.info("session created id=%s host=%s code=%s", session_id, host.id, code)

    if session.is_host_sharing:
        join_session(bot_data, session_id, host, now=now, limit=limit)
    return get_session(bot_data, session_id)


def join_session(
    bot_data: Dict[str, Any],
    session_id: str,
    user: UserProfile,
    now: int,
    limit: int,
) -> SessionParticipant:
    record = _record(bot_data, session_id)
    users = _users(record)
    _sync_active_users(record)
    session = session_from_record(record, session_id)
    _require_open(session)

    existing = users.get(user.id)
    if isinstance(existing, dict) and participant_from_record(existing).id:
        # Rejoining doesn't take another seat
        participant = replace(
            participant_from_record(existing),
            status=PARTICIPANT_ONLINE,
            last_updated=now,
        )
        users[user.id] = participant_to_record(participant)
        return participant

    if not can_accept_participant(session, limit):
        raise SessionFull(session_id, effective_capacity(session, limit))

    participant = SessionParticipant(id=user.id, name=user.name or "User", last_updated=now)
    users[user.id] = participant_to_record(participant)
    _sync_active_users(record)
    add_stats(bot_data, user.id, sessions=1)
    logger.info("user %s joined session %s", user.id, session_id)
    return participant


def leave_session(bot_data: Dict[str, Any], session_id: str, user_id, now: int) -> RecentSession:
    uid = str(user_id)
    record = _record(bot_data, session_id)
    users = _users(record)
    if uid not in users:
        raise NotParticipant(session_id)

    session = session_from_record(record, session_id)
    if uid == session.host_id:
        raise InvalidSessionSettings("The host can't leave their own session. Use /end instead.")
    recent = archive_for_user(bot_data, uid, session, len(users), REASON_LEFT, now)
    users.pop(uid, None)
    _sync_active_users(record)
    logger.info("user %s left session %s", uid, session_id)
    return recent


def remove_participant(
    bot_data: Dict[str, Any],
    session_id: str,
    host_id,
    target_id,
    now: int,
) -> RecentSession:
    record = _record(bot_data, session_id)
    session = session_from_record(record, session_id)
    _require_host(session, host_id)
    tid = str(target_id)
    if tid == session.host_id:
        raise InvalidSessionSettings("The host can't remove themselves. Use /end instead.")
    users = _users(record)
    if tid not in users:
        raise NotParticipant(session_id)
    recent = archive_for_user(bot_data, tid, session, len(users), REASON_REMOVED, now)
    users.pop(tid, None)
    _sync_active_users(record)
    logger.info("host %s removed %s from session %s", host_id, tid, session_id)
    return recent


def update_location(
    bot_data: Dict[str, Any],
    session_id: str,
    user_id,
    lat: float,
    lng: float,
    now: int,
    heading: Optional[float] = None,
    speed: Optional[float] = None,
    battery_level: Optional[int] = None,
    is_charging: Optional[bool] = None,
) -> Optional[SessionParticipant]:
    """Record a position fix. Returns None when the session isn't taking updates from this user."""
    uid = str(user_id)
    record = _record(bot_data, session_id)
    session = session_from_record(record, session_id)
    _require_open(session)
    users = _users(record)
    if uid not in users:
        raise NotParticipant(session_id)
    if not accepts_location_updates(session, uid):
        return None

    prev = participant_from_record(users[uid])
    if prev.status == PARTICIPANT_PAUSED:
        return None
    if speed is None:
        speed = speed_mps(prev.lat, prev.lng, prev.last_updated, lat, lng, now)
    updated = replace(
        prev,
        lat=float(lat),
        lng=float(lng),
        heading=prev.heading if heading is None else float(heading),
        speed=float(speed),
        battery_level=prev.battery_level if battery_level is None else max(0, min(100, int(battery_level))),
        is_charging=prev.is_charging if is_charging is None else bool(is_charging),
        status=PARTICIPANT_ONLINE,
        last_updated=now,
    )
    users[uid] = participant_to_record(updated)
    return updated


def set_participant_paused(bot_data: Dict[str, Any], session_id: str, user_id, paused: bool) -> SessionParticipant:
    uid = str(user_id)
    users = _users(_record(bot_data, session_id))
    if uid not in users:
        raise NotParticipant(session_id)
    p = replace(
        participant_from_record(users[uid]),
        status=PARTICIPANT_PAUSED if paused else PARTICIPANT_ONLINE,
    )
    users[uid] = participant_to_record(p)
    return p


def set_paused(bot_data: Dict[str, Any], session_id: str, user_id, paused: bool) -> SessionData:
    record = _record(bot_data, session_id)
    session = session_from_record(record, session_id)
    _require_host(session, user_id)
    _require_open(session)
    record["status"] = STATUS_PAUSED if paused else STATUS_LIVE
    return session_from_record(record, session_id)


def update_settings(
    bot_data: Dict[str, Any],
    session_id: str,
    user_id,
    now: int,
    limit: int,
    policy: str = POLICY_REJECT,
    max_people=None,
    is_sharing_allowed: Optional[bool] = None,
    is_users_visible: Optional[bool] = None,
    is_host_sharing: Optional[bool] = None,
) -> SessionData:
    record = _record(bot_data, session_id)
    session = session_from_record(record, session_id)
    _require_host(session, user_id)
    _require_open(session)

    # Validate everything before writing so a refused change leaves the record untouched
    changes: Dict[str, Any] = {}
    if max_people is not None:
        resolved = resolve_max_people(max_people, limit, policy)
        active = _sync_active_users(record)
        if int(resolved) < active:
            raise InvalidSessionSettings(f"{active} people are already in this session.")
        changes["maxPeople"] = resolved
    if is_sharing_allowed is not None:
        changes["isSharingAllowed"] = bool(is_sharing_allowed)
    if is_users_visible is not None:
        changes["isUsersVisible"] = bool(is_users_visible)
    if is_host_sharing is not None:
        changes["isHostSharing"] = bool(is_host_sharing)

    host_joins = bool(is_host_sharing) and session.host_id not in _users(record)
    if host_joins:
        _sync_active_users(record)
        pending = session_from_record({**record, **changes}, session_id)
        if not can_accept_participant(pending, limit):
            raise SessionFull(session_id, effective_capacity(pending, limit))

    record.update(changes)
    if host_joins:
        host = get_profile(bot_data, session.host_id) or UserProfile(id=session.host_id, name=session.host_name)
        join_session(bot_data, session_id, host, now=now, limit=limit)
    elif is_host_sharing is False:
        _users(record).pop(session.host_id, None)
        _sync_active_users(record)
    return session_from_record(record, session_id)


def stop_session(
    bot_data: Dict[str, Any],
    session_id: str,
    now: int,
    user_id=None,
    reason: Optional[str] = None,
) -> List[str]:
    """End a session, archive it for everyone still in it, and drop the record.

    ``user_id`` must be the host; pass None when the system ends the session
    (expiry). Returns the ids of participants that got a history entry.
    """
    record = _record(bot_data, session_id)
    session = session_from_record(record, session_id)
    if user_id is not None:
        _require_host(session, user_id)

    record["status"] = STATUS_COMPLETED
    session = session_from_record(record, session_id)
    people = participants_from_users(_users(record))
    archived = []
    for p in people:
        why = reason or (REASON_HOST_ENDED if p.id == session.host_id else REASON_ADMIN_ENDED)
        archive_for_user(bot_data, p.id, session, len(people), why, now)
        archived.append(p.id)

    _sessions(bot_data).pop(session_id, None)
    logger.info("session %s stopped (%s), archived for %d user(s)", session_id, reason or "host", len(archived))
    return archived


# -------- History --------
def _recent_map(bot_data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    return bot_data.setdefault(BD_RECENT, {}).setdefault(str(user_id), {})


def build_recent_session(
    bot_data: Dict[str, Any],
    session: SessionData,
    participants_count: int,
    reason: str,
    now: int,
) -> RecentSession:
    distance_m = route_distance_m(session.start_lat, session.start_lng, session.end_lat, session.end_lng)
    duration_ms = now - session.created_timestamp if session.created_timestamp > 0 else 0
    host = get_profile(bot_data, session.host_id)
    return RecentSession(
        id=session.id,
        title=session.title,
        completed_date=format_completed_date(now),
        completed_timestamp=now,
        duration=format_elapsed(duration_ms),
        participants=f"{participants_count} Users",
        start_loc=session.from_location,
        end_loc=session.to_location,
        total_distance=format_distance(distance_m),
        host_name=session.host_name,
        host_phone=(host.phone_number if host else "") or NOT_SHARED,
        host_email=(host.email if host else "") or NOT_SHARED,
        completion_reason=reason,
        start_lat=session.start_lat,
        start_lng=session.start_lng,
        end_lat=session.end_lat,
        end_lng=session.end_lng,
    )


def archive_for_user(
    bot_data: Dict[str, Any],
    user_id: str,
    session: SessionData,
    participants_count: int,
    reason: str,
    now: int,
) -> RecentSession:
    recent = build_recent_session(bot_data, session, participants_count, reason, now)
    recents = _recent_map(bot_data, user_id)
    recents[session.id] = recent_session_to_record(recent)

    distance_m = route_distance_m(session.start_lat, session.start_lng, session.end_lat, session.end_lng)
    duration_ms = now - session.created_timestamp if session.created_timestamp > 0 else 0
    add_stats(bot_data, user_id, distance_meters=distance_m or 0.0, time_seconds=duration_ms // 1000)

    # keep only the newest RECENT_KEEP entries
    ordered = sorted(
        recents.items(),
        key=lambda kv: recent_session_from_record(kv[1]).completed_timestamp,
        reverse=True,
    )
    for sid, _ in ordered[RECENT_KEEP:]:
        recents.pop(sid, None)
    return recent


def list_recent_sessions(bot_data: Dict[str, Any], user_id, now: int) -> List[RecentSession]:
    """History for a user, newest first. Expired and unreadable entries are dropped."""
    recents = _recent_map(bot_data, str(user_id))
    cutoff = now - RECENT_MAX_AGE_MS
    kept = []
    for sid in list(recents.keys()):
        raw = recents[sid]
        if not isinstance(raw, dict):
            recents.pop(sid, None)
            continue
        rs = recent_session_from_record(raw)
        if rs.completed_timestamp < cutoff:
            recents.pop(sid, None)
            continue
        kept.append(rs)
    kept.sort(key=lambda rs: rs.completed_timestamp, reverse=True)
    return kept


def delete_recent_session(bot_data: Dict[str, Any], user_id, session_id: str) -> bool:
    recents = _recent_map(bot_data, str(user_id))
    return recents.pop(session_id, None) is not None

"""Conversion between untyped store records and the typed entities.

Records come from the shared store as plain dicts with camelCase keys and
whatever value types the writer used. Decoding is total: each field is read
by an extractor that returns ``None`` when the key is missing or the value
has the wrong type, and the caller substitutes that field's default. Nothing
here raises on bad input.
"""

import math
from typing import Any, Dict, Mapping, Optional

from multilink.constants import (
    DEFAULT_BATTERY_LEVEL,
    DEFAULT_DURATION_UNIT,
    DEFAULT_DURATION_VAL,
    DEFAULT_MAX_PEOPLE,
    DEFAULT_PARTICIPANT_NAME,
    PARTICIPANT_ONLINE,
    STATUS_LIVE,
)
from multilink.model import RecentSession, SessionData, SessionParticipant, UserProfile, UserStats

# ---------- Field extractors ----------


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a number here
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def get_str(record: Mapping[str, Any], key: str) -> Optional[str]:
    value = record.get(key)
    return value if isinstance(value, str) else None


def get_bool(record: Mapping[str, Any], key: str) -> Optional[bool]:
    value = record.get(key)
    return value if isinstance(value, bool) else None


def get_strict_float(record: Mapping[str, Any], key: str) -> Optional[float]:
    """Only an actual float counts; an int here means the writer didn't set a coordinate."""
    value = record.get(key)
    return value if isinstance(value, float) else None


def get_float(record: Mapping[str, Any], key: str) -> Optional[float]:
    value = record.get(key)
    if not _is_number(value) or not math.isfinite(value):
        return None
    return float(value)


def get_int(record: Mapping[str, Any], key: str) -> Optional[int]:
    """Any finite int or float, truncated toward zero."""
    value = record.get(key)
    if not _is_number(value) or not math.isfinite(value):
        return None
    return int(value)


def _as_mapping(record: Any) -> Mapping[str, Any]:
    return record if isinstance(record, Mapping) else {}


def _or(value, default):
    return default if value is None else value


# ---------- SessionData ----------


def session_from_record(record: Mapping[str, Any], session_id: str) -> SessionData:
    r = _as_mapping(record)
    return SessionData(
        id=session_id,
        title=_or(get_str(r, "title"), ""),
        host_id=_or(get_str(r, "hostId"), ""),
        host_name=_or(get_str(r, "hostName"), ""),
        join_code=_or(get_str(r, "joinCode"), ""),
        from_location=_or(get_str(r, "fromLocation"), ""),
        to_location=_or(get_str(r, "toLocation"), ""),
        start_lat=get_strict_float(r, "startLat"),
        start_lng=get_strict_float(r, "startLng"),
        end_lat=get_strict_float(r, "endLat"),
        end_lng=get_strict_float(r, "endLng"),
        status=_or(get_str(r, "status"), STATUS_LIVE),
        created_timestamp=_or(get_int(r, "created"), 0),
        duration_val=_or(get_str(r, "durationVal"), DEFAULT_DURATION_VAL),
        duration_unit=_or(get_str(r, "durationUnit"), DEFAULT_DURATION_UNIT),
        is_sharing_allowed=_or(get_bool(r, "isSharingAllowed"), True),
        is_users_visible=_or(get_bool(r, "isUsersVisible"), True),
        is_host_sharing=_or(get_bool(r, "isHostSharing"), True),
        max_people=_or(get_str(r, "maxPeople"), DEFAULT_MAX_PEOPLE),
        active_users=max(0, _or(get_int(r, "activeUsers"), 0)),
    )


def session_to_record(session: SessionData) -> Dict[str, Any]:
    """Render a session with store key names. ``id`` is the record's key, not a field."""
    record: Dict[str, Any] = {
        "title": session.title,
        "hostId": session.host_id,
        "hostName": session.host_name,
        "joinCode": session.join_code,
        "fromLocation": session.from_location,
        "toLocation": session.to_location,
        "status": session.status,
        "created": session.created_timestamp,
        "durationVal": session.duration_val,
        "durationUnit": session.duration_unit,
        "isSharingAllowed": session.is_sharing_allowed,
        "isUsersVisible": session.is_users_visible,
        "isHostSharing": session.is_host_sharing,
        "maxPeople": session.max_people,
        "activeUsers": session.active_users,
    }
    for key, value in (
        ("startLat", session.start_lat),
        ("startLng", session.start_lng),
        ("endLat", session.end_lat),
        ("endLng", session.end_lng),
    ):
        if value is not None:
            record[key] = float(value)
    return record


# ---------- SessionParticipant ----------


def participant_from_record(record: Mapping[str, Any]) -> SessionParticipant:
    r = _as_mapping(record)
    return SessionParticipant(
        id=_or(get_str(r, "id"), ""),
        name=_or(get_str(r, "name"), DEFAULT_PARTICIPANT_NAME),
        lat=_or(get_float(r, "lat"), 0.0),
        lng=_or(get_float(r, "lng"), 0.0),
        heading=_or(get_float(r, "heading"), 0.0),
        speed=_or(get_float(r, "speed"), 0.0),
        battery_level=_or(get_int(r, "batteryLevel"), DEFAULT_BATTERY_LEVEL),
        is_charging=_or(get_bool(r, "isCharging"), False),
        status=_or(get_str(r, "status"), PARTICIPANT_ONLINE),
        last_updated=_or(get_int(r, "lastUpdated"), 0),
    )


def participant_to_record(p: SessionParticipant) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "lat": float(p.lat),
        "lng": float(p.lng),
        "heading": float(p.heading),
        "speed": float(p.speed),
        "batteryLevel": p.battery_level,
        "isCharging": p.is_charging,
        "status": p.status,
        "lastUpdated": p.last_updated,
    }


def participants_from_users(users: Any):
    """Decode a ``users`` sub-record, skipping entries without an id."""
    result = []
    for raw in _as_mapping(users).values():
        p = participant_from_record(raw)
        if p.id:
            result.append(p)
    return result


# ---------- RecentSession ----------


def recent_session_from_record(record: Mapping[str, Any]) -> RecentSession:
    r = _as_mapping(record)
    return RecentSession(
        id=_or(get_str(r, "id"), ""),
        title=_or(get_str(r, "title"), "Unnamed Session"),
        completed_date=_or(get_str(r, "completedDate"), ""),
        completed_timestamp=_or(get_int(r, "completedTimestamp"), 0),
        duration=_or(get_str(r, "duration"), ""),
        participants=_or(get_str(r, "participants"), ""),
        start_loc=_or(get_str(r, "startLoc"), ""),
        end_loc=_or(get_str(r, "endLoc"), ""),
        total_distance=_or(get_str(r, "totalDistance"), ""),
        host_name=_or(get_str(r, "hostName"), ""),
        host_phone=_or(get_str(r, "hostPhone"), ""),
        host_email=_or(get_str(r, "hostEmail"), ""),
        completion_reason=_or(get_str(r, "completionReason"), ""),
        start_lat=get_float(r, "startLat"),
        start_lng=get_float(r, "startLng"),
        end_lat=get_float(r, "endLat"),
        end_lng=get_float(r, "endLng"),
    )


def recent_session_to_record(rs: RecentSession) -> Dict[str, Any]:
    return {
        "id": rs.id,
        "title": rs.title,
        "completedDate": rs.completed_date,
        "completedTimestamp": rs.completed_timestamp,
        "duration": rs.duration,
        "participants": rs.participants,
        "startLoc": rs.start_loc,
        "endLoc": rs.end_loc,
        "totalDistance": rs.total_distance,
        "hostName": rs.host_name,
        "hostPhone": rs.host_phone,
        "hostEmail": rs.host_email,
        "completionReason": rs.completion_reason,
        "startLat": rs.start_lat,
        "startLng": rs.start_lng,
        "endLat": rs.end_lat,
        "endLng": rs.end_lng,
    }


# ---------- UserProfile / UserStats ----------


def profile_from_record(record: Mapping[str, Any], user_id: str) -> UserProfile:
    r = _as_mapping(record)
    return UserProfile(
        id=user_id,
        name=_or(get_str(r, "name"), ""),
        phone_number=_or(get_str(r, "phone"), ""),
        email=_or(get_str(r, "email"), ""),
        photo_url=_or(get_str(r, "photoUrl"), ""),
        created_at=_or(get_int(r, "createdAt"), 0),
    )


def profile_to_record(profile: UserProfile) -> Dict[str, Any]:
    return {
        "id": profile.id,
        "name": profile.name,
        "phone": profile.phone_number,
        "email": profile.email,
        "photoUrl": profile.photo_url,
        "createdAt": profile.created_at,
    }


def stats_from_record(record: Mapping[str, Any]) -> UserStats:
    r = _as_mapping(record)
    return UserStats(
        total_distance_meters=_or(get_float(r, "totalDistance"), 0.0),
        total_time_seconds=_or(get_int(r, "totalTime"), 0),
        total_sessions=_or(get_int(r, "totalSessions"), 0),
    )


def stats_to_record(stats: UserStats) -> Dict[str, Any]:
    return {
        "totalDistance": stats.total_distance_meters,
        "totalTime": stats.total_time_seconds,
        "totalSessions": stats.total_sessions,
    }

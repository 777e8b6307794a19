"""Entities describing a shared-location session and the people in it."""

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from multilink.constants import (
    DEFAULT_BATTERY_LEVEL,
    DEFAULT_DURATION_UNIT,
    DEFAULT_DURATION_VAL,
    DEFAULT_MAX_PEOPLE,
    DEFAULT_PARTICIPANT_NAME,
    DURATION_UNITS,
    PARTICIPANT_ONLINE,
    STATUS_COMPLETED,
    STATUS_LIVE,
    STATUS_PAUSED,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _positive_int(text: str, fallback: int) -> int:
    try:
        value = int(text.strip())
    except (AttributeError, ValueError):
        return fallback
    return value if value > 0 else fallback


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass
class SessionData:
    """A live or completed location-sharing session.

    ``max_people`` and ``duration_val`` stay text to match the stored record;
    use ``max_people_count``, ``duration_amount`` and ``duration`` for the
    numeric values.
    """

    id: str = ""
    title: str = ""
    join_code: str = ""
    from_location: str = ""
    to_location: str = ""
    start_lat: Optional[float] = None
    start_lng: Optional[float] = None
    end_lat: Optional[float] = None
    end_lng: Optional[float] = None
    duration_val: str = DEFAULT_DURATION_VAL
    duration_unit: str = DEFAULT_DURATION_UNIT
    max_people: str = DEFAULT_MAX_PEOPLE
    is_sharing_allowed: bool = True
    is_host_sharing: bool = True
    is_users_visible: bool = True
    host_id: str = ""
    host_name: str = ""
    status: str = STATUS_LIVE
    created_timestamp: int = 0
    active_users: int = 0

    @property
    def max_people_count(self) -> int:
        return _positive_int(self.max_people, int(DEFAULT_MAX_PEOPLE))

    @property
    def duration_amount(self) -> int:
        return _positive_int(self.duration_val, int(DEFAULT_DURATION_VAL))

    @property
    def duration(self) -> timedelta:
        unit_seconds = DURATION_UNITS.get(self.duration_unit, DURATION_UNITS[DEFAULT_DURATION_UNIT])
        return timedelta(seconds=self.duration_amount * unit_seconds)

    @property
    def expires_at_ms(self) -> Optional[int]:
        if self.created_timestamp <= 0:
            return None
        return self.created_timestamp + int(self.duration.total_seconds() * 1000)

    @property
    def is_live(self) -> bool:
        return self.status == STATUS_LIVE

    @property
    def is_paused(self) -> bool:
        return self.status == STATUS_PAUSED

    @property
    def is_terminal(self) -> bool:
        return self.status == STATUS_COMPLETED

    @property
    def start_point(self) -> Optional[GeoPoint]:
        if self.start_lat is None or self.start_lng is None:
            return None
        return GeoPoint(self.start_lat, self.start_lng)

    @property
    def end_point(self) -> Optional[GeoPoint]:
        if self.end_lat is None or self.end_lng is None:
            return None
        return GeoPoint(self.end_lat, self.end_lng)


@dataclass
class SessionParticipant:
    """A single user's live position within a session.

    ``lat``/``lng`` of 0.0 means "no fix yet", not a real place.
    """

    id: str = ""
    name: str = DEFAULT_PARTICIPANT_NAME
    lat: float = 0.0
    lng: float = 0.0
    heading: float = 0.0
    speed: float = 0.0
    battery_level: int = DEFAULT_BATTERY_LEVEL
    is_charging: bool = False
    status: str = PARTICIPANT_ONLINE
    last_updated: int = 0

    @property
    def has_fix(self) -> bool:
        return not (self.lat == 0.0 and self.lng == 0.0)


@dataclass(frozen=True)
class UserProfile:
    id: str = ""
    name: str = ""
    phone_number: str = ""
    email: str = ""
    photo_url: str = ""
    created_at: int = field(default_factory=_now_ms)


@dataclass(frozen=True)
class RecentSession:
    """Summary of a session a user took part in, written once it ends."""

    id: str = ""
    title: str = ""
    completed_date: str = ""
    completed_timestamp: int = 0
    duration: str = ""
    participants: str = ""
    start_loc: str = ""
    end_loc: str = ""
    total_distance: str = ""
    host_name: str = ""
    host_phone: str = ""
    host_email: str = ""
    completion_reason: str = ""
    start_lat: Optional[float] = None
    start_lng: Optional[float] = None
    end_lat: Optional[float] = None
    end_lng: Optional[float] = None


@dataclass(frozen=True)
class SearchResult:
    """A place lookup result from the geocoding provider."""

    name: str
    address: str
    point: GeoPoint
    provider_id: Optional[str] = None


@dataclass(frozen=True)
class UserStats:
    total_distance_meters: float = 0.0
    total_time_seconds: int = 0
    total_sessions: int = 0


@dataclass
class MultiLinkUiState:
    sessions: List[SessionData] = field(default_factory=list)
    active_sessions: List[SessionData] = field(default_factory=list)
    is_loading: bool = False
    error: Optional[str] = None

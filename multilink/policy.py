"""Capacity, visibility and presence rules for a session."""

from dataclasses import replace
from typing import Iterable, List

from multilink.constants import (
    PARTICIPANT_OFFLINE,
    PARTICIPANT_PAUSED,
)
from multilink.exceptions import CapacityLimitExceeded, InvalidSessionSettings
from multilink.model import SessionData, SessionParticipant

POLICY_REJECT = "reject"
POLICY_CLAMP = "clamp"

DEFAULT_OFFLINE_THRESHOLD_MS = 60_000


def resolve_max_people(requested, limit: int, policy: str = POLICY_REJECT) -> str:
    """Validate a requested capacity against the global ceiling.

    Returns the value to store in the record (as text). With ``clamp`` an
    oversized request becomes ``limit``; with ``reject`` it raises
    CapacityLimitExceeded.
    """
    try:
        count = int(str(requested).strip())
    except ValueError:
        raise InvalidSessionSettings(f"Capacity must be a whole number, got {requested!r}.")
    if count < 1:
        raise InvalidSessionSettings("Capacity must be at least 1.")
    if count > limit:
        if policy == POLICY_CLAMP:
            return str(limit)
        raise CapacityLimitExceeded(count, limit)
    return str(count)


def effective_capacity(session: SessionData, limit: int) -> int:
    return min(session.max_people_count, limit)


def can_accept_participant(session: SessionData, limit: int) -> bool:
    return session.active_users < effective_capacity(session, limit)


def accepts_location_updates(session: SessionData, participant_id: str) -> bool:
    if not session.is_live:
        return False
    if participant_id == session.host_id:
        return session.is_host_sharing
    return session.is_sharing_allowed


def visible_participants(
    session: SessionData,
    participants: Iterable[SessionParticipant],
    viewer_id: str,
) -> List[SessionParticipant]:
    people = list(participants)
    if viewer_id == session.host_id:
        return people
    visible = []
    for p in people:
        if p.id == session.host_id:
            if session.is_host_sharing:
                visible.append(p)
        elif p.id == viewer_id or session.is_users_visible:
            visible.append(p)
    return visible


def refresh_presence(
    participants: Iterable[SessionParticipant],
    now_ms: int,
    threshold_ms: int = DEFAULT_OFFLINE_THRESHOLD_MS,
) -> List[SessionParticipant]:
    """Mark anyone silent for longer than ``threshold_ms`` as Offline."""
    refreshed = []
    for p in participants:
        stale = p.last_updated > 0 and (now_ms - p.last_updated) > threshold_ms
        if p.status != PARTICIPANT_PAUSED and stale:
            p = replace(p, status=PARTICIPANT_OFFLINE)
        refreshed.append(p)
    return refreshed

from dataclasses import replace
from typing import Any, Dict, Optional

from multilink.constants import BD_PROFILES, BD_STATS
from multilink.decoding import profile_from_record, profile_to_record, stats_from_record, stats_to_record
from multilink.model import UserProfile, UserStats


def _profiles(bot_data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    return bot_data.setdefault(BD_PROFILES, {})


def get_profile(bot_data: Dict[str, Any], user_id) -> Optional[UserProfile]:
    record = _profiles(bot_data).get(str(user_id))
    if record is None:
        return None
    return profile_from_record(record, str(user_id))


def ensure_profile(bot_data: Dict[str, Any], user_id, name: str, created_at: int) -> UserProfile:
    """Create the profile on first contact; an existing one is returned unchanged."""
    existing = get_profile(bot_data, user_id)
    if existing is not None:
        return existing
    profile = UserProfile(id=str(user_id), name=name or "", created_at=created_at)
    _profiles(bot_data)[str(user_id)] = profile_to_record(profile)
    return profile


def update_profile(bot_data: Dict[str, Any], user_id, **changes) -> Optional[UserProfile]:
    profile = get_profile(bot_data, user_id)
    if profile is None:
        return None
    profile = replace(profile, **changes)
    _profiles(bot_data)[str(user_id)] = profile_to_record(profile)
    return profile


# -------- Lifetime stats --------
def get_stats(bot_data: Dict[str, Any], user_id) -> UserStats:
    return stats_from_record(bot_data.setdefault(BD_STATS, {}).get(str(user_id), {}))


def add_stats(
    bot_data: Dict[str, Any],
    user_id,
    distance_meters: float = 0.0,
    time_seconds: int = 0,
    sessions: int = 0,
) -> UserStats:
    current = get_stats(bot_data, user_id)
    updated = UserStats(
        total_distance_meters=current.total_distance_meters + distance_meters,
        total_time_seconds=current.total_time_seconds + time_seconds,
        total_sessions=current.total_sessions + sessions,
    )
    bot_data[BD_STATS][str(user_id)] = stats_to_record(updated)
    return updated

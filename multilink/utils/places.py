from typing import Optional, Tuple

from multilink.model import GeoPoint, SearchResult


def search_result_from_venue(venue) -> SearchResult:
    """Telegram venues are place-search results picked by the user."""
    provider_id = getattr(venue, "google_place_id", None) or getattr(venue, "foursquare_id", None)
    return SearchResult(
        name=venue.title or venue.address or "",
        address=venue.address or "",
        point=GeoPoint(float(venue.location.latitude), float(venue.location.longitude)),
        provider_id=provider_id,
    )


def place_from_message(message) -> Optional[Tuple[str, Optional[float], Optional[float]]]:
    """Read a (label, lat, lng) place from a venue, a GPS pin or plain text."""
    if message is None:
        return None
    if getattr(message, "venue", None):
        result = search_result_from_venue(message.venue)
        return result.name, result.point.lat, result.point.lng
    if getattr(message, "location", None):
        lat = float(message.location.latitude)
        lng = float(message.location.longitude)
        return f"📍 {lat:.5f}, {lng:.5f}", lat, lng
    text = (getattr(message, "text", None) or "").strip()
    if text:
        return text, None, None
    return None

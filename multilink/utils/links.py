def build_join_link(bot_username: str, join_code: str) -> str:
    username = bot_username.lstrip("@")
    return f"https://t.me/{username}?start=join_{join_code}"


def build_webhook_url(base_url: str, path: str) -> str:
    base = base_url.rstrip("/")
    if not path.startswith("/"):
        path = "/" + path
    return base + path


def build_map_link(lat: float, lng: float) -> str:
    return f"https://www.openstreetmap.org/?mlat={lat:.5f}&mlon={lng:.5f}#map=16/{lat:.5f}/{lng:.5f}"


def parse_join_param(param: str):
    """Return the join code from a /start payload like "join_ABCD1234", else None."""
    if not param or not param.startswith("join_"):
        return None
    code = param.split("_", 1)[1].strip()
    return code.upper() or None

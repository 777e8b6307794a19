import os
from pathlib import Path

from dotenv import load_dotenv, find_dotenv

# Load .env early so other modules see variables on import.
# Looked up in order:
#   - any .env discoverable via current working dir
#   - <repo>/.env
#   - <repo>/.env/.env, <repo>/.env/local.env, <repo>/.env/dev.env


def _load_env_files():
    found = find_dotenv(usecwd=True)
    if found:
        load_dotenv(found)  # does not override existing env by default

    repo_root = Path(__file__).resolve().parents[1]
    candidates = [
        repo_root / ".env",
        repo_root / ".env" / ".env",
        repo_root / ".env" / "local.env",
        repo_root / ".env" / "dev.env",
    ]
    for p in candidates:
        if p.is_file():
            load_dotenv(p, override=False)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


_load_env_files()

# ---------- Config values ----------

# Token resolution order:
# 1) BOT_TOKEN
# 2) TELEGRAM_TOKEN (legacy/alt name)
# Fallback: "PUT-YOUR-TOKEN-HERE"
TELEGRAM_TOKEN = (
    os.environ.get("BOT_TOKEN")
    or os.environ.get("TELEGRAM_TOKEN")
    or "PUT-YOUR-TOKEN-HERE"
)

# Default IANA timezone for rendering times
DEFAULT_TZ = os.environ.get("DEFAULT_TZ", "Asia/Singapore")

# Persistence filename (PicklePersistence)
PERSISTENCE_FILE = os.environ.get("STATE_FILE", "multilink_data.pkl")

# Global ceiling for any session's requested capacity
MAX_PEOPLE_LIMIT = _int_env("MAX_PEOPLE_LIMIT", 50)

# What to do when a host asks for more than MAX_PEOPLE_LIMIT: "reject" or "clamp"
MAX_PEOPLE_POLICY = os.environ.get("MAX_PEOPLE_POLICY", "reject").strip().lower()
if MAX_PEOPLE_POLICY not in ("reject", "clamp"):
    MAX_PEOPLE_POLICY = "reject"

# A participant with no position report for this long is shown as Offline
OFFLINE_AFTER_SECONDS = _int_env("OFFLINE_AFTER_SECONDS", 60)

# Conversation states for /create
ASK_TITLE, ASK_FROM, ASK_TO, ASK_DURATION, ASK_CAPACITY = range(5)

# Keys for user_data / bot_data
UD_TZ = "tz"                          # per-user timezone name
UD_ACTIVE = "active_session_id"       # per-user current session id
UD_DRAFT = "session_draft"            # per-user /create draft dict
UD_PREFS = "MultiLinkPrefs"           # per-user preference set name
BD_SESSIONS = "sessions"              # bot_data: session_id -> session record
BD_RECENT = "recent_sessions"         # bot_data: user_id (str) -> {session_id: record}
BD_PROFILES = "profiles"              # bot_data: user_id (str) -> profile record
BD_STATS = "user_stats"               # bot_data: user_id (str) -> stats record

# Session status values
STATUS_LIVE = "Live"
STATUS_PAUSED = "Paused"
STATUS_COMPLETED = "Completed"

# Participant status values
PARTICIPANT_ONLINE = "Online"
PARTICIPANT_PAUSED = "Paused"
PARTICIPANT_OFFLINE = "Offline"

# Record defaults
DEFAULT_DURATION_VAL = "2"
DEFAULT_DURATION_UNIT = "Hrs"
DEFAULT_MAX_PEOPLE = "10"
DEFAULT_PARTICIPANT_NAME = "User"
DEFAULT_BATTERY_LEVEL = 100

# Duration units as stored in records, in seconds
DURATION_UNITS = {"Mins": 60, "Hrs": 3600, "Days": 86400}

# Join codes: no "O" or "0" to avoid misreads
JOIN_CODE_ALPHABET = "ABCDEFGHIJKLMNPQRSTUVWXYZ123456789"
JOIN_CODE_LENGTH = 8
JOIN_CODE_ATTEMPTS = 5

# Recent session history per user
RECENT_KEEP = 10
RECENT_MAX_AGE_MS = 10 * 24 * 60 * 60 * 1000

# Completion reasons
REASON_HOST_ENDED = "You ended the session"
REASON_ADMIN_ENDED = "Ended by Admin"
REASON_LEFT = "You left the session"
REASON_REMOVED = "Removed by Admin"
REASON_EXPIRED = "Session expired"

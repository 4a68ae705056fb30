import os

BOT_TOKEN = os.getenv("BOT_TOKEN", "")
# Только этот пользователь управляет ботом (0 = любой)
OWNER_USER_ID = int(os.getenv("OWNER_USER_ID", "0"))

STORE_PATH = os.getenv("STORE_PATH", "worklog_store.json")
STORE_KEY_SESSIONS = "awl_sessions"
STORE_KEY_SETTINGS = "awl_settings"
STORE_KEY_CURRENT_SESSION = "awl_currentSessionId"

LOCATION_SOURCE = os.getenv("LOCATION_SOURCE", "telegram").strip().lower()
LOCATION_API_URL = os.getenv("LOCATION_API_URL", "")
LOCATION_API_KEY = os.getenv("LOCATION_API_KEY", "")
GEO_TIMEOUT_SEC = float(os.getenv("GEO_TIMEOUT_SEC", "20"))

DEFAULT_RADIUS_M = float(os.getenv("DEFAULT_RADIUS_M", "200"))
DEFAULT_AUTO_LOG = os.getenv("DEFAULT_AUTO_LOG", "1") not in {"0", "false", "False"}

DEFAULT_DELAY_MS = int(os.getenv("DEFAULT_DELAY_MS", "60000"))
CRITICAL_DELAY_MS = int(os.getenv("CRITICAL_DELAY_MS", "20000"))
APPROACHING_DELAY_MS = int(os.getenv("APPROACHING_DELAY_MS", "120000"))
FAR_DELAY_MS = int(os.getenv("FAR_DELAY_MS", "300000"))

CRITICAL_BUFFER_M = float(os.getenv("CRITICAL_BUFFER_M", "500"))
APPROACHING_LIMIT_M = float(os.getenv("APPROACHING_LIMIT_M", "5000"))

HTTP_TIMEOUT_SEC = int(os.getenv("HTTP_TIMEOUT_SEC", "10"))

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")
GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

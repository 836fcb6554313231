import os
from pathlib import Path


cwd = Path(__file__).parent


def _env_list(name: str) -> list[str]:
	raw = os.environ.get(name, "")
	return [item.strip() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
	raw = os.environ.get(name)
	if raw is None:
		return default
	return raw.strip().lower() in ("1", "true", "yes", "on")


DATA_ROOT_PATH = Path(os.environ.get("CINEFLOW_DATA_ROOT", cwd / "uploads"))
DB_PATH = Path(os.environ.get("CINEFLOW_DB_PATH", cwd / ".database" / "database.db"))
PUBLIC_DIR = Path(os.environ.get("PUBLIC_DIR", cwd / "public"))

APK_FILENAME = "app-latest.apk"
APK_DOWNLOAD_NAME = "CineFlow.apk"
CONTENT_FILENAME = "channels.m3u"
CONTENT_VERSION_FILENAME = "channels-version.json"

MAX_APK_SIZE = 300 * 1024 * 1024
MAX_CONTENT_SIZE = 50 * 1024 * 1024
UPLOAD_CHUNK_SIZE = 1024 * 1024
# room for multipart boundaries and the non-file fields around the upload
UPLOAD_FORM_OVERHEAD = 64 * 1024

RECENT_USER_DAYS = 7
LIST_USERS_LIMIT = 1000

ADMIN_EMAILS = _env_list("ADMIN_EMAILS")
ADMIN_MASTER_KEY = os.environ.get("ADMIN_MASTER_KEY", "")
# Development-only bootstrap secret, disable with ALLOW_FALLBACK_MASTER_KEY=false
FALLBACK_MASTER_KEY = "cineflow-admin-2024"
ALLOW_FALLBACK_MASTER_KEY = _env_bool("ALLOW_FALLBACK_MASTER_KEY", True)

FIREBASE_SERVICE_ACCOUNT_PATH = Path(
	os.environ.get("FIREBASE_SERVICE_ACCOUNT_PATH", cwd / "serviceAccountKey.json")
)

LOGGER_CONFIG_PATH = Path(os.environ.get("LOGGER_CONFIG_PATH", cwd / "logger_config.yaml"))
LOGGER_NAME = os.environ.get("LOGGER_NAME", "dev")

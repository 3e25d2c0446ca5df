"""Static configuration for tasklens.

All user-editable settings (chats, backfill, session recovery, classifier,
logging) live in a single JSON file for quick edits without touching Python.
Secrets stay in the environment (.env).
"""

import json
import os

from core.config import BackfillConfig, ClassifierConfig, ConnectionConfig, PipelineConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.getenv("TASKLENS_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _project_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database.
DB_PATH = _project_path(_CONFIG.get("database", {}).get("path", "tasklens.db"))

# Chats whose names contain one of these strings feed the pipeline until a
# selection has been saved in chat_configs. The command chat never does.
_chats = _CONFIG.get("chats", {})
MONITORED_CHATS = [name for name in _chats.get("monitored", []) if name]
COMMAND_CHAT = _chats.get("command_chat", "Bot Commands")
VERIFY_CHATS_ON_STARTUP = bool(_chats.get("verify_on_startup", True))
DISCOVERY_TIMEOUT_SECONDS = float(_chats.get("discovery_timeout_seconds", 45))

PIPELINE = PipelineConfig(
    min_message_length=int(_chats.get("min_message_length", 3)),
)

# Startup scan: how far back to look and how to page through history.
_backfill = _CONFIG.get("backfill", {})
BACKFILL = BackfillConfig(
    enabled=bool(_backfill.get("enabled", True)),
    max_lookback_days=int(_backfill.get("max_lookback_days", 3)),
    fetch_limit=int(_backfill.get("fetch_limit", 50)),
    max_fetch_rounds=int(_backfill.get("max_fetch_rounds", 20)),
    scan_timeout_seconds=float(_backfill.get("scan_timeout_seconds", 60)),
)

# Session recovery policy.
_session = _CONFIG.get("session", {})
SESSION_DIR = _project_path(_session.get("directory", "sessions"))
SESSION_NAME = _session.get("name", "tasklens")
CONNECTION = ConnectionConfig(
    max_reconnect_attempts=int(_session.get("max_reconnect_attempts", 3)),
    session_clear_threshold=int(_session.get("clear_threshold", 3)),
    auto_clear_session=bool(_session.get("auto_clear", True)),
    retry_delay_seconds=int(_session.get("retry_delay_ms", 3000)) / 1000,
    connect_timeout_seconds=float(_session.get("connect_timeout_seconds", 180)),
    ready_timeout_seconds=float(_session.get("ready_timeout_seconds", 240)),
    max_session_age_days=int(_session.get("max_age_days", 30)),
)

# Classifier throttling and model selection.
_classifier = _CONFIG.get("classifier", {})
CLASSIFIER_MODEL = _classifier.get("model", "gpt-4o")
CLASSIFIER_TEMPERATURE = float(_classifier.get("temperature", 0.3))
CLASSIFIER = ClassifierConfig(
    min_interval_seconds=int(_classifier.get("min_interval_ms", 1000)) / 1000,
    timeout_seconds=float(_classifier.get("timeout_seconds", 15)),
)

_health = _CONFIG.get("health", {})
HEALTH_ENABLED = bool(_health.get("enabled", True))
HEALTH_INTERVAL_SECONDS = float(_health.get("interval_seconds", 300))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})

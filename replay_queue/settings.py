"""Configuration for the request replay queue."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
LOGS_DIR = Path(os.getenv("LOGS_DIR", str(BASE_DIR / "logs")))
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")

# Durable store. DATABASE_URL switches from the spool directory to PostgreSQL.
DATABASE_URL = os.getenv("DATABASE_URL")
STORE_DIR = Path(os.getenv("STORE_DIR", str(BASE_DIR / "data")))
STORE_NAMESPACE = os.getenv("STORE_NAMESPACE", "bgQueueSyncDB")
STORE_VERSION = int(os.getenv("STORE_VERSION", "1"))
QUEUE_STORE_NAME = os.getenv("QUEUE_STORE_NAME", "QueueStore")
SYNC_STORE_NAME = os.getenv("SYNC_STORE_NAME", "SyncRegistrations")

# Queue settings
DEFAULT_MAX_AGE_SECONDS = float(os.getenv("DEFAULT_MAX_AGE_SECONDS", str(5 * 24 * 60 * 60)))
BROADCAST_CHANNEL = os.getenv("BROADCAST_CHANNEL", "bgqueue")

# Replay settings
REPLAY_FETCH_TIMEOUT = float(os.getenv("REPLAY_FETCH_TIMEOUT", "0"))  # 0 = no timeout
CONNECTIVITY_CHECK_URL = os.getenv("CONNECTIVITY_CHECK_URL")
CONNECTIVITY_CHECK_INTERVAL = int(os.getenv("CONNECTIVITY_CHECK_INTERVAL", "30"))  # seconds between checks
CONNECTIVITY_CHECK_TIMEOUT = float(os.getenv("CONNECTIVITY_CHECK_TIMEOUT", "5"))


def validate_config():
    """Validate required configuration."""
    errors = []

    if not CONNECTIVITY_CHECK_URL:
        errors.append("CONNECTIVITY_CHECK_URL is required")
    elif not CONNECTIVITY_CHECK_URL.startswith(("http://", "https://")):
        errors.append(f"CONNECTIVITY_CHECK_URL must be an http(s) URL: {CONNECTIVITY_CHECK_URL}")

    if DEFAULT_MAX_AGE_SECONDS <= 0:
        errors.append("DEFAULT_MAX_AGE_SECONDS must be positive")

    if CONNECTIVITY_CHECK_INTERVAL < 1:
        errors.append("CONNECTIVITY_CHECK_INTERVAL must be at least 1 second")

    if REPLAY_FETCH_TIMEOUT < 0:
        errors.append("REPLAY_FETCH_TIMEOUT must not be negative")

    if not DATABASE_URL:
        if not STORE_DIR.is_absolute():
            errors.append(f"STORE_DIR must be absolute: {STORE_DIR}")
        else:
            try:
                STORE_DIR.mkdir(parents=True, exist_ok=True)
            except Exception as e:
                errors.append(f"Cannot create STORE_DIR: {e}")

    if errors:
        raise ValueError("Config errors:\n  " + "\n  ".join(errors))

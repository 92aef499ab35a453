"""Configuration for the notification queue service."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Logging
LOGS_DIR = Path(os.getenv("LOG_DIR", "logs"))  # created on demand by setup_logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")

# Database connection
DATABASE_URL = os.getenv("DATABASE_URL")
DB_POOL_MIN = int(os.getenv("DB_POOL_MIN", "1"))
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "10"))

# Worker settings
POLL_INTERVAL = int(os.getenv("POLL_INTERVAL", "5"))  # seconds between idle polls
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "10"))
WORKER_THREADS = int(os.getenv("WORKER_THREADS", "2"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "5"))  # stored per row, advisory only
TRANSPORT_DELAY_MS = int(os.getenv("TRANSPORT_DELAY_MS", "50"))

# Bulk import
IMPORT_CONCURRENCY = int(os.getenv("IMPORT_CONCURRENCY", "10"))
IMPORT_RATE_LIMIT = float(os.getenv("IMPORT_RATE_LIMIT", "100"))  # tokens per second
IMPORT_RATE_BURST = int(os.getenv("IMPORT_RATE_BURST", str(IMPORT_CONCURRENCY)))


def validate_config():
    """Validate required configuration."""
    errors = []

    if not DATABASE_URL:
        errors.append("DATABASE_URL is required")

    if DB_POOL_MIN < 1 or DB_POOL_MAX < DB_POOL_MIN:
        errors.append(f"DB_POOL_MIN/DB_POOL_MAX out of range: {DB_POOL_MIN}/{DB_POOL_MAX}")

    if BATCH_SIZE <= 0:
        errors.append(f"BATCH_SIZE must be positive: {BATCH_SIZE}")

    if WORKER_THREADS <= 0:
        errors.append(f"WORKER_THREADS must be positive: {WORKER_THREADS}")

    if MAX_RETRIES < 0:
        errors.append(f"MAX_RETRIES must not be negative: {MAX_RETRIES}")

    if IMPORT_CONCURRENCY <= 0:
        errors.append(f"IMPORT_CONCURRENCY must be positive: {IMPORT_CONCURRENCY}")

    if IMPORT_RATE_LIMIT <= 0 or IMPORT_RATE_BURST <= 0:
        errors.append(
            f"IMPORT_RATE_LIMIT and IMPORT_RATE_BURST must be positive: "
            f"{IMPORT_RATE_LIMIT}/{IMPORT_RATE_BURST}"
        )

    if errors:
        raise ValueError("Config errors:\n  " + "\n  ".join(errors))

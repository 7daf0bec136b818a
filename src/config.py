import os

basedir = os.path.abspath(os.path.dirname(__file__))
DEFAULT_DB_PATH = os.path.join(basedir, "db", "marketplace_messaging.db")

# object storage
ATTACHMENTS_BUCKET = "message-attachments"
SIGNED_URL_TTL_SECONDS = 3600

MAX_IMAGE_BYTES = 2 * 1024 * 1024
MAX_FILE_BYTES = 10 * 1024 * 1024

ALLOWED_CONTENT_TYPES = [
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "text/csv",
]

# messages
MAX_MESSAGE_LENGTH = 10000
PREVIEW_LENGTH = 200

# admin listing
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

TYPING_EXPIRY_SECONDS = 5.0
TYPING_SWEEP_INTERVAL_SECONDS = 1.0


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> dict:
    """
    Builds the flask config from environment variables

    Returns:
        dict of config values
    """
    return {
        "SQLALCHEMY_DATABASE_URI": os.getenv(
            "MESSAGING_DATABASE_URI", f"sqlite:///{DEFAULT_DB_PATH}"
        ),
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "STORAGE_URL": os.getenv("STORAGE_URL"),
        "STORAGE_SERVICE_KEY": os.getenv("STORAGE_SERVICE_KEY"),
        "STORAGE_TIMEOUT_SECONDS": float(os.getenv("STORAGE_TIMEOUT_SECONDS", "10")),
        "SIGNED_URL_TTL_SECONDS": int(
            os.getenv("SIGNED_URL_TTL_SECONDS", str(SIGNED_URL_TTL_SECONDS))
        ),
        "NOTIFICATION_WEBHOOK_URL": os.getenv("NOTIFICATION_WEBHOOK_URL"),
        "NOTIFICATION_TIMEOUT_SECONDS": float(
            os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5")
        ),
        "TYPING_EXPIRY_SECONDS": float(
            os.getenv("TYPING_EXPIRY_SECONDS", str(TYPING_EXPIRY_SECONDS))
        ),
        "TYPING_SWEEP_INTERVAL_SECONDS": float(
            os.getenv("TYPING_SWEEP_INTERVAL_SECONDS", str(TYPING_SWEEP_INTERVAL_SECONDS))
        ),
        "SEED_SAMPLE_DATA": _env_bool("SEED_SAMPLE_DATA", True),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        "PORT": int(os.getenv("PORT", "8080")),
    }

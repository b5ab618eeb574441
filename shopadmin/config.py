"""Runtime configuration loaded from the environment (overridable in tests)."""
import os
from typing import NamedTuple

IMAGE_STORAGE_MODES = ("inline", "disk")


class Settings(NamedTuple):
    database_url: str
    jwt_secret: str
    jwt_expires_seconds: int
    image_storage: str
    upload_dir: str
    max_upload_files: int
    max_upload_bytes: int
    log_config: str
    first_admin_name: str
    first_admin_email: str
    first_admin_password: str


def load_settings() -> Settings:
    image_storage = os.getenv("IMAGE_STORAGE", "inline").lower()
    if image_storage not in IMAGE_STORAGE_MODES:
        raise RuntimeError(f"IMAGE_STORAGE must be one of {IMAGE_STORAGE_MODES}, got {image_storage!r}")
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./shopadmin.db"),
        jwt_secret=os.getenv("JWT_SECRET", "dev_secret"),
        jwt_expires_seconds=int(os.getenv("JWT_EXPIRES_SECONDS", str(60 * 60 * 4))),  # 4 hours
        image_storage=image_storage,
        upload_dir=os.getenv("UPLOAD_DIR", "./uploads"),
        max_upload_files=int(os.getenv("MAX_UPLOAD_FILES", "10")),
        max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024))),
        log_config=os.getenv("LOG_CONFIG", ""),
        first_admin_name=os.getenv("FIRST_ADMIN_NAME", "Admin User"),
        first_admin_email=os.getenv("FIRST_ADMIN_EMAIL", ""),
        first_admin_password=os.getenv("FIRST_ADMIN_PASSWORD", ""),
    )


state = load_settings()


def get_settings() -> Settings:
    return state


def set_settings(**overrides) -> Settings:
    global state
    state = state._replace(**overrides)
    return state


def use_settings(settings: Settings) -> Settings:
    """Make ``settings`` the process-wide configuration (tokens, CLI, app)."""
    global state
    state = settings
    return state


def reset_settings() -> Settings:
    global state
    state = load_settings()
    return state

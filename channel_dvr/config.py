import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"
DATA_DIR.mkdir(exist_ok=True)

DOWNLOAD_BACKENDS = ("metube", "aria2c")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    ADMIN_CHAT_ID: int = int(os.getenv("ADMIN_CHAT_ID", "0"))
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", str(DATA_DIR / "channel_dvr.db")))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Scheduler
    CHECK_INTERVAL_MINUTES: int = int(os.getenv("CHECK_INTERVAL_MINUTES", "30"))
    INITIAL_CHECK_DELAY_SECONDS: int = int(os.getenv("INITIAL_CHECK_DELAY_SECONDS", "60"))
    CHANNEL_DELAY_SECONDS: float = float(os.getenv("CHANNEL_DELAY_SECONDS", "2"))
    AUTOSTART_SCHEDULER: bool = _env_bool("AUTOSTART_SCHEDULER", True)

    # Outbound call limits
    FEED_TIMEOUT_SECONDS: float = float(os.getenv("FEED_TIMEOUT_SECONDS", "15"))
    BACKEND_TIMEOUT_SECONDS: float = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "10"))
    RESOLVER_TIMEOUT_SECONDS: float = float(os.getenv("RESOLVER_TIMEOUT_SECONDS", "30"))
    RESOLVER_SOCKET_TIMEOUT_SECONDS: int = int(os.getenv("RESOLVER_SOCKET_TIMEOUT_SECONDS", "15"))
    YTDLP_BINARY: str = os.getenv("YTDLP_BINARY", "yt-dlp")

    # Seed values for the persisted settings row
    DOWNLOAD_BACKEND: str = os.getenv("DOWNLOAD_BACKEND", "metube").lower()
    METUBE_URL: str = os.getenv("METUBE_URL", "http://localhost:8081")
    ARIA2C_IP: str = os.getenv("ARIA2C_IP", "localhost")
    ARIA2C_PORT: str = os.getenv("ARIA2C_PORT", "6800")
    DOWNLOAD_FOLDER: str = os.getenv("DOWNLOAD_FOLDER", "/downloads")
    FILTER_SHORTS: bool = _env_bool("FILTER_SHORTS", False)

    @classmethod
    def validate(cls) -> list[str]:
        errors = []
        if not cls.TELEGRAM_BOT_TOKEN:
            errors.append("TELEGRAM_BOT_TOKEN is required")
        if not cls.ADMIN_CHAT_ID:
            errors.append("ADMIN_CHAT_ID is required")
        if cls.DOWNLOAD_BACKEND not in DOWNLOAD_BACKENDS:
            errors.append(
                f"DOWNLOAD_BACKEND must be one of {', '.join(DOWNLOAD_BACKENDS)}"
            )
        if cls.CHECK_INTERVAL_MINUTES <= 0:
            errors.append("CHECK_INTERVAL_MINUTES must be positive")
        return errors

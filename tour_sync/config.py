import json
import os
from pathlib import Path


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings:
    """Application settings with environment variable overrides."""

    APP_NAME: str = "Tour Operations Sheet Sync"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = _as_bool(os.getenv("DEBUG"), default=False)

    # Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
    DB_PATH: Path = DATA_DIR / "tour_sync.db"

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        f"sqlite+aiosqlite:///{DB_PATH}",
    )

    # CORS
    ALLOWED_ORIGINS: list[str] = _split_csv(
        os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost")
    )

    # Spreadsheet source: "google" (Sheets API) or "excel" (.xlsx files in EXCEL_DIR)
    SHEET_SOURCE: str = os.getenv("SHEET_SOURCE", "google").strip().lower()
    EXCEL_DIR: Path = Path(os.getenv("EXCEL_DIR", str(DATA_DIR / "sheets")))
    GOOGLE_APPLICATION_CREDENTIALS: str = os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "")
    SHEETS_MAX_RETRIES: int = int(os.getenv("SHEETS_MAX_RETRIES", "4"))
    SHEETS_BACKOFF_BASE: float = float(os.getenv("SHEETS_BACKOFF_BASE", "0.8"))

    # Only tabs whose name starts with this prefix are offered for sync
    SHEET_NAME_PREFIX: str = os.getenv("SHEET_NAME_PREFIX", "S")
    SAMPLE_ROWS: int = int(os.getenv("SAMPLE_ROWS", "5"))

    # Destination tables exposed to the sync screen
    SYNC_TABLES: list[str] = _split_csv(
        os.getenv("SYNC_TABLES", "reservations,tours,customers,products,team")
    )
    # table -> natural key column; tables not listed use "id"
    NATURAL_KEYS: dict[str, str] = json.loads(
        os.getenv("NATURAL_KEYS", '{"team": "email"}')
    )
    DEFAULT_NATURAL_KEY: str = "id"
    # 0 = derive from the row count
    SYNC_PROGRESS_EVERY: int = int(os.getenv("SYNC_PROGRESS_EVERY", "0"))
    SYNC_ERROR_DETAIL_LIMIT: int = 50

    # Auth
    SYNC_API_TOKEN: str = os.getenv("SYNC_API_TOKEN", "")
    BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Reservation cleanup: legacy product id -> canonical product id
    CLEANUP_PRODUCT_ALIASES: dict[str, str] = {
        "MDGCSUNRISE_X": "MDGCSUNRISE",
        "MDGC1D_X": "MDGC1D",
    }


settings = Settings()

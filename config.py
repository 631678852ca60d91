import os

from errors import ConfigurationError

PLACEHOLDER_API_KEY = "your_api_key_here"


def getenv_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v)
    except ValueError:
        raise ConfigurationError(f"Env var {name} must be an integer, got {v!r}")


class Settings:
    # Read on construction so values loaded by load_dotenv() are picked up
    def __init__(self):
        # Flask
        self.SECRET_KEY: str = os.getenv("FLASK_SECRET_KEY", "dev-only-change-me")
        self.PORT: int = getenv_int("PORT", 5000)
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

        # DB (falls back to a local SQLite file)
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///traffic.db")

        # Google Maps
        self.GOOGLE_MAPS_API_KEY: str = os.getenv("GOOGLE_MAPS_API_KEY", "").strip()
        self.HTTP_TIMEOUT_SECONDS: int = getenv_int("HTTP_TIMEOUT_SECONDS", 10)

        # Scheduling
        self.MIN_CYCLE_SECONDS: int = getenv_int("MIN_CYCLE_SECONDS", 300)

        # Caches
        self.GEOCODE_CACHE_TTL_SECONDS: int = getenv_int("GEOCODE_CACHE_TTL_SECONDS", 24 * 3600)
        self.ROUTE_PREVIEW_CACHE_TTL_SECONDS: int = getenv_int("ROUTE_PREVIEW_CACHE_TTL_SECONDS", 5 * 60)
        self.CACHE_MAX_ENTRIES: int = getenv_int("CACHE_MAX_ENTRIES", 500)

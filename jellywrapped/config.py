from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    jellyfin_url: str = "http://localhost:8096"
    jellyfin_api_key: str = ""
    playback_database_path: str = "./data/playback_reporting.db"
    jellyfin_database_path: str = "./data/jellyfin.db"
    event_source: str = "database"
    api_port: int = 8086
    timezone: str = "Europe/Riga"

    # Session and marathon merge windows
    session_gap_min_seconds: int = -60
    session_gap_max_seconds: int = 300
    marathon_gap_min_minutes: int = -5
    marathon_gap_max_minutes: int = 45
    marathon_min_items: int = 2
    significant_break_minutes: int = 5

    # Completion gating
    finished_threshold: float = 0.8
    abandoned_min_threshold: float = 0.01

    metadata_cache_ttl_seconds: int = 300
    metadata_cache_max_size: int = 5000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def playback_database_path_resolved(self) -> Path:
        """Get resolved Playback Reporting database path."""
        return Path(self.playback_database_path)

    @property
    def jellyfin_database_path_resolved(self) -> Path:
        """Get resolved Jellyfin library database path."""
        return Path(self.jellyfin_database_path)

    @property
    def uses_reporting_api(self) -> bool:
        """Whether events are pulled over HTTP instead of from the SQLite file."""
        return self.event_source.lower() == "api"


settings = Settings()

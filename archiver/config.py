# archiver/config.py
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    db_type: str = "postgresql+asyncpg"
    db_username: str = ""
    db_password: str = ""
    db_host: str = "localhost"
    db_name: str = "discord_archive"
    db_url: Optional[str] = None  # Full URL override, e.g. sqlite+aiosqlite:///archive.db

    discord_token: str = ""

    # Throttling (milliseconds)
    archive_delay_ms: int = 100   # Delay between channels in a guild sweep
    backlog_delay_ms: int = 100   # Delay between pages during startup catch-up

    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        if self.db_url:
            return self.db_url
        return f"{self.db_type}://{self.db_username}:{self.db_password}@{self.db_host}/{self.db_name}"

    class Config:
        env_file = ".env"

settings = Settings()

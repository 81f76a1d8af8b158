from typing import Optional
from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage
    data_dir: str = "./data"
    db_path: Optional[str] = None
    download_dir: Optional[str] = None

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8080

    # Google Drive
    drive_api_base: str = "https://www.googleapis.com/drive/v3"
    drive_access_token: str = ""
    drive_timeout: Optional[float] = None  # None = no timeout

    # Transfer settings
    progress_interval: float = 0.1  # seconds between progress events
    chunk_size: int = 64 * 1024

    class Config:
        env_prefix = "BOOKSHELF_"
        case_sensitive = False

    @property
    def drive_configured(self) -> bool:
        """Check if a Drive access token is available."""
        return bool(self.drive_access_token)

    @property
    def database_path(self) -> Path:
        """Get database file path, creating its directory."""
        path = Path(self.db_path) if self.db_path else Path(self.data_dir) / "bookshelf.db"
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def download_path(self) -> Path:
        """Get managed downloads directory as Path."""
        path = Path(self.download_dir) if self.download_dir else Path(self.data_dir) / "downloads"
        path.mkdir(parents=True, exist_ok=True)
        return path


settings = Settings()

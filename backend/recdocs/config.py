from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_path: Path = Path.home() / "RecDocuments"
    environment: str = "production"
    api_prefix: str = "/api"
    host: str = "127.0.0.1"
    port: int = 8000

    # Blob store. Public URLs mimic the hosted bucket layout so that the
    # proxy-storage endpoint can map them back to object paths.
    storage_bucket: str = "rec-protocols"
    storage_host: str = "firebasestorage.googleapis.com"

    # Cap uploads before building archives in memory.
    max_upload_bytes: int = 25 * 1024 * 1024  # 25 MiB per file
    upstream_timeout_seconds: float = 30.0
    upstream_user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) server-side-fetch"
    proxy_cache_max_age: int = 3600
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"

    # Local document cache
    cache_prefix: str = "app-docs-cache"
    verify_archive_hash: bool = True

    @property
    def db_path(self) -> Path:
        return self.data_path / "db.sqlite"

    @property
    def blobs_dir(self) -> Path:
        return self.data_path / "blobs"

    @property
    def cache_db_path(self) -> Path:
        return self.data_path / "document_cache.sqlite"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    model_config = {"env_prefix": "RECDOCS_"}


settings = Settings()

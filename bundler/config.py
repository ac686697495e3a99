"""Application configuration via environment variables."""

import re

from pydantic_settings import BaseSettings
from typing import Optional


# Hostnames the object store answers to from inside the compose network.
# Presigned URLs are handed to browsers, which reach the same store on localhost.
_INTERNAL_STORE_HOSTS = re.compile(r"(delineate-minio|minio):9000")
_DEFAULT_PUBLIC_ENDPOINT = "http://localhost:9000"


class Settings(BaseSettings):
    # Object store
    s3_region: str = "us-east-1"
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[str] = None
    s3_endpoint: Optional[str] = None
    s3_public_endpoint: Optional[str] = None
    s3_force_path_style: bool = False

    source_bucket: str = "source"
    downloads_bucket: str = "downloads"

    # Durable job records
    database_url: str = "sqlite:///./data/download_jobs.db"

    # Job processing
    presign_ttl_seconds: int = 3600
    archive_compression_level: int = 6
    progress_poll_interval_seconds: float = 1.0
    max_keys_per_job: int = 100
    shutdown_grace_seconds: float = 10.0

    # Server
    log_level: str = "INFO"
    port: int = 3000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def public_endpoint(self) -> str:
        """Endpoint that callers outside the deployment use to fetch presigned URLs."""
        if self.s3_public_endpoint:
            return self.s3_public_endpoint
        if not self.s3_endpoint:
            return _DEFAULT_PUBLIC_ENDPOINT
        return _INTERNAL_STORE_HOSTS.sub("localhost:9000", self.s3_endpoint)


settings = Settings()

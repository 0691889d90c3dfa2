from pydantic import field_validator
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # Kubernetes namespace holding every managed database
    namespace: str = "dataforge-db"

    # Empty for auto-detect (in-cluster service account, then ~/.kube/config)
    kubeconfig: Optional[str] = None

    # ==========================================================================
    # S3/Object Storage Configuration
    # ==========================================================================
    # Mandatory: backups are written here by the CronJobs and read back on restore.
    # Use MinIO for local development, real S3 for production.
    s3_endpoint: str
    s3_access_key: str
    s3_secret_key: str
    s3_bucket: str = "dataforge-backups"
    s3_region: str = "us-east-1"

    # Cluster-wide secret the backup CronJobs read their S3 credentials from
    s3_credentials_secret: str = "dataforge-s3-credentials"

    # ==========================================================================
    # Database Defaults
    # ==========================================================================
    password_length: int = 16
    default_backup_schedule: str = "0 3 * * *"  # Daily at 3 AM

    # Label value marking resources owned by this service (managed-by=<value>)
    managed_by_label: str = "dataforge"

    # ==========================================================================
    # Kubernetes Storage & Networking
    # ==========================================================================
    storage_class: str = "longhorn"
    volume_size: str = "1Gi"
    # LoadBalancer gives every database a dedicated IP (MetalLB on bare metal)
    service_type: str = "LoadBalancer"

    # Finished job cleanup
    scheduled_job_ttl_seconds: int = 3600
    manual_backup_ttl_seconds: int = 300

    # ==========================================================================
    # Streaming
    # ==========================================================================
    log_tail_lines: int = 50
    stream_chunk_size: int = 64 * 1024
    # Max chunks buffered between a producer thread and the HTTP consumer
    stream_queue_size: int = 16

    # Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = "INFO"

    # CORS Configuration
    # Comma-separated list of allowed origins (the dashboard)
    cors_origins: str = "http://localhost:3000"

    @property
    def cors_origins_list(self) -> list:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @field_validator("s3_endpoint")
    @classmethod
    def validate_s3_endpoint(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("S3_ENDPOINT must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("s3_access_key", "s3_secret_key")
    @classmethod
    def validate_s3_credentials(cls, v):
        if not v.strip():
            raise ValueError("S3 credentials must not be empty")
        return v

    @field_validator("password_length")
    @classmethod
    def validate_password_length(cls, v):
        if v < 8:
            raise ValueError("PASSWORD_LENGTH must be at least 8")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields from .env file
        case_sensitive = False  # Allow lowercase env vars to match uppercase field names


@lru_cache()
def get_settings():
    return Settings()

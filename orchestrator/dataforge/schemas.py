import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

# RFC 1123 label; resource names append suffixes like "-statefulset-0"
NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 40


class CreateDatabaseRequest(BaseModel):
    name: str
    type: str  # "postgres" or "redis"
    version: Optional[str] = None
    db_name: Optional[str] = None  # Defaults to name, normalized per engine
    backup_schedule: Optional[str] = None  # Cron expression, defaults to daily at 3 AM

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not NAME_MIN_LENGTH <= len(v) <= NAME_MAX_LENGTH:
            raise ValueError(f'Name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters')
        if not NAME_PATTERN.match(v):
            raise ValueError('Name must contain only lowercase letters, digits and hyphens, and start and end with a letter or digit')
        return v

    @field_validator('version')
    @classmethod
    def validate_version(cls, v):
        if v is not None and not re.match(r'^[A-Za-z0-9._-]+$', v):
            raise ValueError('Version must be an image tag like "16" or "7.2"')
        return v or None

    @field_validator('backup_schedule')
    @classmethod
    def validate_backup_schedule(cls, v):
        if v is not None and len(v.split()) != 5:
            raise ValueError('Backup schedule must be a 5-field cron expression')
        return v


class EndpointResponse(BaseModel):
    ip: str
    port: int

    class Config:
        from_attributes = True


class DatabaseInstanceResponse(BaseModel):
    name: str
    type: str
    status: str  # "Pending" or "Running"
    username: str = ""
    password: str = ""
    internal_name: str = ""
    version: str = ""
    backup_schedule: str = ""
    endpoint: Optional[EndpointResponse] = None


class BackupArtifactResponse(BaseModel):
    key: str
    filename: str
    size_bytes: int
    last_modified: datetime

    class Config:
        from_attributes = True


class ManualBackupResponse(BaseModel):
    job_name: str


class PruneBackupsResponse(BaseModel):
    deleted: int

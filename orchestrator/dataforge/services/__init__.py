"""
Services for database lifecycle, backups and streaming.

- database_manager: create/list/get/delete instances (saga with rollback)
- backup_service: manual backups, live dumps, restores, artifact management
- observability: log tailing
- s3_manager: backup artifacts in S3-compatible storage
"""

from .errors import (
    DataForgeError,
    AlreadyExistsError,
    NotFoundError,
    UnknownEngineError,
    BackupConfigurationAbsentError,
    ChannelFailureError,
    CompensationFailure,
)

__all__ = [
    "DataForgeError",
    "AlreadyExistsError",
    "NotFoundError",
    "UnknownEngineError",
    "BackupConfigurationAbsentError",
    "ChannelFailureError",
    "CompensationFailure",
]

"""
Database instance endpoints.

Lifecycle (create/list/get/delete), backups (list/trigger/prune/delete/restore),
live dumps and log tailing for managed database instances.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from ..schemas import (
    BackupArtifactResponse,
    CreateDatabaseRequest,
    DatabaseInstanceResponse,
    EndpointResponse,
    ManualBackupResponse,
    PruneBackupsResponse,
)
from ..services.backup_service import BackupService, get_backup_service
from ..services.database_manager import DatabaseInstance, DatabaseManager, get_database_manager
from ..services.errors import (
    AlreadyExistsError,
    BackupConfigurationAbsentError,
    NotFoundError,
    UnknownEngineError,
)
from ..services.observability import LogService, get_log_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/databases", tags=["databases"])


def _to_response(instance: DatabaseInstance) -> DatabaseInstanceResponse:
    return DatabaseInstanceResponse(
        name=instance.name,
        type=instance.engine,
        status=instance.status,
        username=instance.username,
        password=instance.password,
        internal_name=instance.internal_name,
        version=instance.version,
        backup_schedule=instance.backup_schedule,
        endpoint=EndpointResponse.model_validate(instance.endpoint) if instance.endpoint else None
    )


def _to_http_error(error: Exception, action: str) -> HTTPException:
    """Translate a service error into an HTTP error; unexpected errors become a generic 500."""
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, AlreadyExistsError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, (NotFoundError, BackupConfigurationAbsentError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (UnknownEngineError, ValueError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))

    logger.error(f"Failed to {action}: {error}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


# =============================================================================
# Lifecycle
# =============================================================================

@router.get("", response_model=List[DatabaseInstanceResponse])
async def list_databases(manager: DatabaseManager = Depends(get_database_manager)):
    try:
        return [_to_response(instance) for instance in await manager.list_databases()]
    except Exception as e:
        raise _to_http_error(e, "list databases")


@router.post("", response_model=DatabaseInstanceResponse, status_code=status.HTTP_201_CREATED)
async def create_database(
    request: CreateDatabaseRequest,
    manager: DatabaseManager = Depends(get_database_manager)
):
    """
    Provision a new database instance.

    The response carries the generated credentials.
    """
    try:
        instance = await manager.create_database(
            name=request.name,
            engine=request.type,
            version=request.version,
            db_name=request.db_name,
            backup_schedule=request.backup_schedule
        )
        return _to_response(instance)
    except Exception as e:
        raise _to_http_error(e, "create database")


@router.get("/{name}", response_model=DatabaseInstanceResponse)
async def get_database(name: str, manager: DatabaseManager = Depends(get_database_manager)):
    try:
        return _to_response(await manager.get_database(name))
    except Exception as e:
        raise _to_http_error(e, "get database")


@router.delete("/{name}")
async def delete_database(name: str, manager: DatabaseManager = Depends(get_database_manager)):
    try:
        await manager.delete_database(name)
        return {"message": f"Database {name} deleted"}
    except Exception as e:
        raise _to_http_error(e, "delete database")


# =============================================================================
# Backups
# =============================================================================

@router.get("/{name}/backups", response_model=List[BackupArtifactResponse])
async def list_backups(name: str, backups: BackupService = Depends(get_backup_service)):
    """List backups of an instance, newest first."""
    try:
        return [BackupArtifactResponse.model_validate(a) for a in await backups.list_backups(name)]
    except Exception as e:
        raise _to_http_error(e, "list backups")


@router.post("/{name}/backups", response_model=ManualBackupResponse, status_code=status.HTTP_201_CREATED)
async def trigger_backup(name: str, backups: BackupService = Depends(get_backup_service)):
    """Start a one-off backup Job."""
    try:
        job_name = await backups.trigger_manual_backup(name)
        return ManualBackupResponse(job_name=job_name)
    except Exception as e:
        raise _to_http_error(e, "trigger backup")


# Kept for dashboard clients using the singular path
router.add_api_route(
    "/{name}/backup",
    trigger_backup,
    methods=["POST"],
    response_model=ManualBackupResponse,
    status_code=status.HTTP_201_CREATED,
    include_in_schema=False
)


@router.post("/{name}/backups/prune", response_model=PruneBackupsResponse)
async def prune_backups(
    name: str,
    keep: int = Query(..., ge=0, description="Number of most recent backups to keep"),
    backups: BackupService = Depends(get_backup_service)
):
    try:
        deleted = await backups.prune_backups(name, keep)
        return PruneBackupsResponse(deleted=deleted)
    except Exception as e:
        raise _to_http_error(e, "prune backups")


@router.delete("/{name}/backups/{filename}")
async def delete_backup(name: str, filename: str, backups: BackupService = Depends(get_backup_service)):
    try:
        await backups.delete_backup(name, filename)
        return {"message": f"Backup {filename} deleted"}
    except Exception as e:
        raise _to_http_error(e, "delete backup")


@router.put("/{name}/backups/{filename}")
async def restore_backup(
    name: str,
    filename: str,
    confirm: bool = Query(False, description="Must be true; restore replaces all current data"),
    backups: BackupService = Depends(get_backup_service)
):
    """
    Restore an instance from a backup.

    Destructive: active connections are terminated and current data is
    replaced. Requires ?confirm=true.
    """
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Restore replaces all current data; repeat with ?confirm=true"
        )
    try:
        await backups.restore_backup(name, filename)
        return {"message": f"Database {name} restored from {filename}"}
    except Exception as e:
        raise _to_http_error(e, "restore backup")


# =============================================================================
# Streams
# =============================================================================

@router.get("/{name}/dump")
async def download_dump(name: str, backups: BackupService = Depends(get_backup_service)):
    """Stream a live dump of the instance as a file download."""
    try:
        stream, filename = await backups.open_dump(name)
    except Exception as e:
        raise _to_http_error(e, "start dump")

    return StreamingResponse(
        stream,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.get("/{name}/logs")
async def follow_logs(name: str, logs: LogService = Depends(get_log_service)):
    """Follow the database container log (last lines first)."""
    try:
        stream = await logs.open_log_stream(name)
    except Exception as e:
        raise _to_http_error(e, "open logs")

    return StreamingResponse(stream, media_type="text/plain")

"""Utility modules for the DataForge orchestrator."""

from .resource_naming import (
    get_secret_name,
    get_service_name,
    get_statefulset_name,
    get_backup_cronjob_name,
    get_primary_pod_name,
    get_pvc_name,
    get_manual_backup_job_name,
)
from .credentials import generate_password

__all__ = [
    'get_secret_name',
    'get_service_name',
    'get_statefulset_name',
    'get_backup_cronjob_name',
    'get_primary_pod_name',
    'get_pvc_name',
    'get_manual_backup_job_name',
    'generate_password',
]

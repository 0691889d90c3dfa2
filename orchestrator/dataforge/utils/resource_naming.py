"""
Resource naming utilities for database instances.

Every Kubernetes resource belonging to an instance is derived from the instance
name alone, so any operation can locate the full resource set without a lookup
table:

- {name}-secret       credentials Secret
- {name}-service      LoadBalancer Service
- {name}-statefulset  StatefulSet (single replica, pod {name}-statefulset-0)
- {name}-backup       backup CronJob
"""

import time
from typing import Optional


def get_secret_name(name: str) -> str:
    return f"{name}-secret"


def get_service_name(name: str) -> str:
    return f"{name}-service"


def get_statefulset_name(name: str) -> str:
    return f"{name}-statefulset"


def get_backup_cronjob_name(name: str) -> str:
    return f"{name}-backup"


def get_primary_pod_name(name: str) -> str:
    """
    Get the pod name of the single StatefulSet replica.

    StatefulSet pods are named {statefulset}-{ordinal}; we always run one replica.
    """
    return f"{get_statefulset_name(name)}-0"


def get_pvc_name(name: str, volume_name: str) -> str:
    """
    Get the PVC created from the StatefulSet volumeClaimTemplate.

    Pattern: <volume-name>-<pod-name> (e.g. postgres-data-shop-db-statefulset-0)
    """
    return f"{volume_name}-{get_primary_pod_name(name)}"


def get_manual_backup_job_name(name: str, timestamp_ms: Optional[int] = None) -> str:
    """
    Get a unique name for a one-off backup Job.

    Examples:
        >>> get_manual_backup_job_name("shop-db", 1700000000000)
        "shop-db-manual-backup-1700000000000"
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{name}-manual-backup-{timestamp_ms}"

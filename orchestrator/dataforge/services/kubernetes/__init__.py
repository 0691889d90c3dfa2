"""
Kubernetes gateway and resource templates for database instances.
"""

from .client import KubernetesClient, get_k8s_client
from .helpers import (
    ENGINE_LABEL,
    DATABASE_CONTAINER,
    get_standard_labels,
    get_management_selector,
    create_credentials_secret_manifest,
    create_s3_credentials_secret_manifest,
    create_service_manifest,
    create_statefulset_manifest,
    create_backup_cronjob_manifest,
    create_manual_backup_job_manifest,
)

__all__ = [
    "KubernetesClient",
    "get_k8s_client",
    "ENGINE_LABEL",
    "DATABASE_CONTAINER",
    "get_standard_labels",
    "get_management_selector",
    "create_credentials_secret_manifest",
    "create_s3_credentials_secret_manifest",
    "create_service_manifest",
    "create_statefulset_manifest",
    "create_backup_cronjob_manifest",
    "create_manual_backup_job_manifest",
]

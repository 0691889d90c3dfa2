"""
Kubernetes Resource Templates for Database Instances

Pure builders rendering the resource set of one database instance as
`kubernetes.client` model objects. Nothing here talks to the API server.

Resource set (see utils.resource_naming):
- {name}-secret: credentials (username/password/db_name/version/backup_schedule)
- {name}-service: LoadBalancer exposing the engine port
- {name}-statefulset: single replica, container "database", one volumeClaimTemplate
- {name}-backup: CronJob streaming a dump to S3 (engines with automated backup only)

Labels:
- app=<name> and managed-by=<marker> on every resource
- dataforge.db/type=<engine> on the StatefulSet and its pod template, used to
  re-resolve the engine strategy later
"""

import copy
import logging
from typing import Dict, Optional

from kubernetes import client

from ..strategies.base import DatabaseStrategy, secret_env
from ...utils.resource_naming import (
    get_backup_cronjob_name,
    get_manual_backup_job_name,
    get_secret_name,
    get_service_name,
    get_statefulset_name,
)

logger = logging.getLogger(__name__)

ENGINE_LABEL = "dataforge.db/type"
DATABASE_CONTAINER = "database"
BACKUP_CONTAINER = "backup-worker"
PORT_NAME = "db-port"

# Keys of the global S3 credentials secret, mapped to the env vars backup jobs read
S3_SECRET_ENV = {
    "S3_ACCESS_KEY": "access-key",
    "S3_SECRET_KEY": "secret-key",
    "S3_ENDPOINT": "endpoint",
    "S3_BUCKET": "bucket",
    "S3_REGION": "region",
}


# =============================================================================
# Labels
# =============================================================================

def get_standard_labels(
    name: str,
    managed_by: str,
    engine: Optional[str] = None
) -> Dict[str, str]:
    """
    Get standard labels for instance resources.

    Args:
        name: Instance name
        managed_by: Management marker (managed-by label value)
        engine: Engine tag, set on the workload only

    Returns:
        Dict of labels
    """
    labels = {
        "app": name,
        "managed-by": managed_by,
    }
    if engine:
        labels[ENGINE_LABEL] = engine
    return labels


def get_management_selector(managed_by: str) -> str:
    """Label selector matching every resource owned by this service."""
    return f"managed-by={managed_by}"


# =============================================================================
# Secrets
# =============================================================================

def create_credentials_secret_manifest(
    name: str,
    namespace: str,
    username: str,
    password: str,
    db_name: str,
    version: str,
    backup_schedule: str,
    managed_by: str
) -> client.V1Secret:
    """
    Create the credentials Secret of an instance.

    stringData is used so the API server does the base64 encoding.
    """
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=get_secret_name(name),
            namespace=namespace,
            labels=get_standard_labels(name, managed_by)
        ),
        type="Opaque",
        string_data={
            "username": username,
            "password": password,
            "db_name": db_name,
            "version": version,
            "backup_schedule": backup_schedule,
        }
    )


def create_s3_credentials_secret_manifest(
    secret_name: str,
    namespace: str,
    access_key: str,
    secret_key: str,
    endpoint: str,
    bucket: str,
    region: str,
    managed_by: str
) -> client.V1Secret:
    """Create the cluster-wide S3 credentials Secret read by backup jobs."""
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=secret_name,
            namespace=namespace,
            labels={"managed-by": managed_by}
        ),
        type="Opaque",
        string_data={
            "access-key": access_key,
            "secret-key": secret_key,
            "endpoint": endpoint,
            "bucket": bucket,
            "region": region,
        }
    )


# =============================================================================
# Service
# =============================================================================

def create_service_manifest(
    name: str,
    namespace: str,
    strategy: DatabaseStrategy,
    managed_by: str,
    service_type: str = "LoadBalancer"
) -> client.V1Service:
    """Create the Service exposing the engine port of the instance pod."""
    port = strategy.default_port()
    return client.V1Service(
        metadata=client.V1ObjectMeta(
            name=get_service_name(name),
            namespace=namespace,
            labels=get_standard_labels(name, managed_by)
        ),
        spec=client.V1ServiceSpec(
            type=service_type,
            selector={"app": name},
            ports=[
                client.V1ServicePort(
                    name=PORT_NAME,
                    port=port,
                    target_port=port,
                    protocol="TCP"
                )
            ]
        )
    )


# =============================================================================
# StatefulSet
# =============================================================================

def create_statefulset_manifest(
    name: str,
    namespace: str,
    strategy: DatabaseStrategy,
    version: Optional[str],
    managed_by: str,
    storage_class: str,
    volume_size: str = "1Gi"
) -> client.V1StatefulSet:
    """
    Create the StatefulSet running the database.

    The volumeClaimTemplate is named after strategy.volume_name(), so the PVC is
    <volume_name>-<name>-statefulset-0 and must be deleted explicitly; Kubernetes
    keeps StatefulSet PVCs after the workload is gone.
    """
    labels = get_standard_labels(name, managed_by, engine=strategy.engine)
    secret_name = get_secret_name(name)

    container = client.V1Container(
        name=DATABASE_CONTAINER,
        image=strategy.image_for(version),
        args=strategy.container_args() or None,
        env=strategy.container_env(secret_name),
        ports=[
            client.V1ContainerPort(
                name=PORT_NAME,
                container_port=strategy.default_port()
            )
        ],
        volume_mounts=strategy.volume_mounts(),
        readiness_probe=strategy.readiness_probe()
    )

    return client.V1StatefulSet(
        metadata=client.V1ObjectMeta(
            name=get_statefulset_name(name),
            namespace=namespace,
            labels=labels
        ),
        spec=client.V1StatefulSetSpec(
            service_name=get_service_name(name),
            replicas=1,
            selector=client.V1LabelSelector(match_labels={"app": name}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(containers=[container])
            ),
            volume_claim_templates=[
                client.V1PersistentVolumeClaim(
                    metadata=client.V1ObjectMeta(name=strategy.volume_name()),
                    spec=client.V1PersistentVolumeClaimSpec(
                        access_modes=["ReadWriteOnce"],
                        storage_class_name=storage_class,
                        resources=client.V1VolumeResourceRequirements(
                            requests={"storage": volume_size}
                        )
                    )
                )
            ]
        )
    )


# =============================================================================
# Backup CronJob / Job
# =============================================================================

def create_backup_cronjob_manifest(
    name: str,
    namespace: str,
    strategy: DatabaseStrategy,
    db_name: str,
    version: Optional[str],
    schedule: str,
    managed_by: str,
    s3_secret_name: str,
    ttl_seconds: int = 3600
) -> Optional[client.V1CronJob]:
    """
    Create the scheduled backup CronJob.

    Returns:
        V1CronJob manifest, or None when the engine has no automated backup
    """
    spec = strategy.backup_job_spec(name, get_secret_name(name), db_name, version)
    if spec is None:
        logger.debug(f"[K8S] No backup job for engine {strategy.engine}, skipping CronJob")
        return None

    env = list(spec.env) + [
        secret_env(env_name, s3_secret_name, key)
        for env_name, key in S3_SECRET_ENV.items()
    ]

    labels = get_standard_labels(name, managed_by)
    labels[ENGINE_LABEL] = "backup"

    return client.V1CronJob(
        metadata=client.V1ObjectMeta(
            name=get_backup_cronjob_name(name),
            namespace=namespace,
            labels=labels
        ),
        spec=client.V1CronJobSpec(
            schedule=schedule,
            job_template=client.V1JobTemplateSpec(
                spec=client.V1JobSpec(
                    ttl_seconds_after_finished=ttl_seconds,
                    template=client.V1PodTemplateSpec(
                        spec=client.V1PodSpec(
                            restart_policy="OnFailure",
                            containers=[
                                client.V1Container(
                                    name=BACKUP_CONTAINER,
                                    image=spec.image,
                                    command=spec.command,
                                    env=env
                                )
                            ]
                        )
                    )
                )
            )
        )
    )


def create_manual_backup_job_manifest(
    name: str,
    namespace: str,
    cronjob: client.V1CronJob,
    managed_by: str,
    ttl_seconds: int = 300,
    timestamp_ms: Optional[int] = None
) -> client.V1Job:
    """
    Clone the CronJob's job template into a one-off Job.

    The template is deep-copied so the CronJob object read from the API is left
    untouched.
    """
    job_spec = copy.deepcopy(cronjob.spec.job_template.spec)
    job_spec.ttl_seconds_after_finished = ttl_seconds

    labels = get_standard_labels(name, managed_by)
    labels[ENGINE_LABEL] = "manual-backup"

    return client.V1Job(
        metadata=client.V1ObjectMeta(
            name=get_manual_backup_job_name(name, timestamp_ms),
            namespace=namespace,
            labels=labels
        ),
        spec=job_spec
    )

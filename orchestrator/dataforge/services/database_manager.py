"""
Database Lifecycle Manager

Creates, lists, looks up and deletes database instances. Each instance is a
resource set ({name}-secret, -service, -statefulset, -backup) that is created
as a saga: any failure after the credentials Secret rolls back whatever was
created, in reverse order.

There is no database of our own: every listing reconstructs instances from
cluster state (StatefulSet status, credentials Secret, Service address).
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from kubernetes import client
from kubernetes.client.rest import ApiException

from .errors import AlreadyExistsError, NotFoundError, UnknownEngineError
from .kubernetes.helpers import (
    ENGINE_LABEL,
    create_backup_cronjob_manifest,
    create_credentials_secret_manifest,
    create_s3_credentials_secret_manifest,
    create_service_manifest,
    create_statefulset_manifest,
    get_management_selector,
)
from .saga import Saga
from .strategies import DatabaseStrategy, get_strategy
from ..utils.resource_naming import (
    get_backup_cronjob_name,
    get_pvc_name,
    get_secret_name,
    get_service_name,
    get_statefulset_name,
)

logger = logging.getLogger(__name__)

STATUS_PENDING = "Pending"
STATUS_RUNNING = "Running"


@dataclass
class Endpoint:
    ip: str
    port: int


@dataclass
class DatabaseInstance:
    name: str
    engine: str
    status: str
    username: str = ""
    password: str = ""
    internal_name: str = ""
    version: str = ""
    backup_schedule: str = ""
    endpoint: Optional[Endpoint] = None


def _is_conflict(error: BaseException) -> bool:
    return isinstance(error, ApiException) and error.status == 409


def decode_secret_data(secret: client.V1Secret) -> Dict[str, str]:
    """Decode the base64 `data` map of a Secret read from the API."""
    return {
        key: base64.b64decode(value).decode("utf-8")
        for key, value in (secret.data or {}).items()
    }


def compute_status(statefulset: client.V1StatefulSet) -> str:
    """Running iff ready replicas == desired replicas."""
    desired = statefulset.spec.replicas if statefulset.spec else None
    if desired is None:
        desired = 1
    ready = (statefulset.status.ready_replicas if statefulset.status else None) or 0
    return STATUS_RUNNING if ready == desired else STATUS_PENDING


def extract_endpoint(service: client.V1Service) -> Optional[Endpoint]:
    """LoadBalancer address of a Service, or None until one is assigned."""
    load_balancer = service.status.load_balancer if service.status else None
    ingress = (load_balancer.ingress if load_balancer else None) or []
    if not ingress or not service.spec or not service.spec.ports:
        return None
    address = ingress[0].ip or ingress[0].hostname
    if not address:
        return None
    return Endpoint(ip=address, port=service.spec.ports[0].port)


class DatabaseManager:
    """
    Lifecycle orchestrator for database instances.

    Dependencies default to the process-wide singletons and can be injected
    for tests.
    """

    def __init__(self, k8s_client=None, s3_manager=None, settings=None):
        self._k8s = k8s_client
        self._s3 = s3_manager
        self._settings = settings
        # Strong references to fire-and-forget cleanup tasks
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def k8s(self):
        if self._k8s is None:
            from .kubernetes.client import get_k8s_client
            self._k8s = get_k8s_client()
        return self._k8s

    @property
    def s3(self):
        if self._s3 is None:
            from .s3_manager import get_s3_manager
            self._s3 = get_s3_manager()
        return self._s3

    @property
    def settings(self):
        if self._settings is None:
            from ..config import get_settings
            self._settings = get_settings()
        return self._settings

    # =========================================================================
    # SHARED LOOKUPS
    # =========================================================================

    async def ensure_s3_credentials_secret(self) -> None:
        """Create or refresh the cluster-wide S3 credentials Secret for backup jobs."""
        settings = self.settings
        await self.k8s.ensure_secret(
            create_s3_credentials_secret_manifest(
                secret_name=settings.s3_credentials_secret,
                namespace=self.k8s.namespace,
                access_key=settings.s3_access_key,
                secret_key=settings.s3_secret_key,
                endpoint=settings.s3_endpoint,
                bucket=settings.s3_bucket,
                region=settings.s3_region,
                managed_by=settings.managed_by_label
            )
        )

    async def resolve_strategy(self, name: str) -> DatabaseStrategy:
        """
        Resolve the engine strategy of an existing instance from its workload label.

        Raises:
            NotFoundError: If the instance has no StatefulSet
        """
        statefulset = await self.k8s.read_statefulset(get_statefulset_name(name))
        if statefulset is None:
            raise NotFoundError()
        labels = statefulset.metadata.labels or {}
        return get_strategy(labels.get(ENGINE_LABEL, ""))

    async def get_internal_name(self, name: str) -> str:
        """
        Internal database name stored in the credentials Secret.

        Raises:
            NotFoundError: If the Secret is absent
        """
        secret = await self.k8s.read_secret(get_secret_name(name))
        if secret is None:
            raise NotFoundError()
        internal_name = decode_secret_data(secret).get("db_name")
        if not internal_name:
            raise NotFoundError("Database credentials are incomplete")
        return internal_name

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_database(
        self,
        name: str,
        engine: str,
        version: Optional[str] = None,
        db_name: Optional[str] = None,
        backup_schedule: Optional[str] = None
    ) -> DatabaseInstance:
        """
        Provision a database instance.

        Steps:
        1. Ensure the global S3 credentials Secret (create or patch)
        2. Create the credentials Secret
        3. Create the Service
        4. Create the StatefulSet
        5. Create the backup CronJob, if the engine has one

        Returns:
            The new instance, status Pending, with plaintext credentials. This is
            the only response that carries the generated password besides listing.

        Raises:
            UnknownEngineError: Before any resource is touched
            AlreadyExistsError: If the credentials Secret already exists
        """
        settings = self.settings
        k8s = self.k8s
        namespace = k8s.namespace
        strategy = get_strategy(engine)

        version = version or strategy.default_version
        internal_name = strategy.normalize_database_name(db_name or name)
        schedule = backup_schedule or settings.default_backup_schedule
        username = strategy.generate_username()
        password = strategy.generate_password(settings.password_length)

        logger.info(f"[DB] Creating {strategy.engine} {version} database: {name}")

        secret = create_credentials_secret_manifest(
            name=name,
            namespace=namespace,
            username=username,
            password=password,
            db_name=internal_name,
            version=version,
            backup_schedule=schedule,
            managed_by=settings.managed_by_label
        )
        service = create_service_manifest(
            name=name,
            namespace=namespace,
            strategy=strategy,
            managed_by=settings.managed_by_label,
            service_type=settings.service_type
        )
        statefulset = create_statefulset_manifest(
            name=name,
            namespace=namespace,
            strategy=strategy,
            version=version,
            managed_by=settings.managed_by_label,
            storage_class=settings.storage_class,
            volume_size=settings.volume_size
        )
        cronjob = create_backup_cronjob_manifest(
            name=name,
            namespace=namespace,
            strategy=strategy,
            db_name=internal_name,
            version=version,
            schedule=schedule,
            managed_by=settings.managed_by_label,
            s3_secret_name=settings.s3_credentials_secret,
            ttl_seconds=settings.scheduled_job_ttl_seconds
        )

        saga = Saga(f"create {name}")
        try:
            await saga.run_step("s3-credentials", self.ensure_s3_credentials_secret)

            try:
                await saga.run_step(
                    "secret",
                    lambda: k8s.create_secret(secret),
                    compensation=lambda: k8s.delete_secret(get_secret_name(name)),
                    compensate_failed=lambda e: not _is_conflict(e)
                )
            except ApiException as e:
                if e.status == 409:
                    logger.warning(f"[DB] Database {name} already exists")
                    raise AlreadyExistsError(name) from e
                raise

            await saga.run_step(
                "service",
                lambda: k8s.create_service(service),
                compensation=lambda: k8s.delete_service(get_service_name(name)),
                compensate_failed=lambda e: not _is_conflict(e)
            )
            await saga.run_step(
                "statefulset",
                lambda: k8s.create_statefulset(statefulset),
                compensation=lambda: k8s.delete_statefulset(get_statefulset_name(name)),
                compensate_failed=lambda e: not _is_conflict(e)
            )
            if cronjob is not None:
                await saga.run_step(
                    "backup-cronjob",
                    lambda: k8s.create_cronjob(cronjob),
                    compensation=lambda: k8s.delete_cronjob(get_backup_cronjob_name(name)),
                    compensate_failed=lambda e: not _is_conflict(e)
                )
            else:
                logger.info(f"[DB] Engine {strategy.engine} has no scheduled backup, skipping CronJob")
        except AlreadyExistsError:
            raise
        except Exception as e:
            logger.error(f"[DB] ❌ Failed to create database {name}: {e}")
            await saga.compensate()
            raise

        logger.info(f"[DB] ✅ Database {name} created")
        return DatabaseInstance(
            name=name,
            engine=strategy.engine,
            status=STATUS_PENDING,
            username=username,
            password=password,
            internal_name=internal_name,
            version=version,
            backup_schedule=schedule
        )

    # =========================================================================
    # LIST / GET
    # =========================================================================

    async def _describe(self, statefulset: client.V1StatefulSet) -> DatabaseInstance:
        labels = statefulset.metadata.labels or {}
        sts_name = statefulset.metadata.name
        name = labels.get("app") or sts_name[:-len("-statefulset")]

        instance = DatabaseInstance(
            name=name,
            engine=labels.get(ENGINE_LABEL, ""),
            status=compute_status(statefulset)
        )

        try:
            secret = await self.k8s.read_secret(get_secret_name(name))
            if secret is not None:
                data = decode_secret_data(secret)
                instance.username = data.get("username", "")
                instance.password = data.get("password", "")
                instance.internal_name = data.get("db_name", "")
                instance.version = data.get("version", "")
                instance.backup_schedule = data.get("backup_schedule", "")
        except Exception as e:
            logger.warning(f"[DB] Could not read credentials of {name}: {e}")

        try:
            service = await self.k8s.read_service(get_service_name(name))
            if service is not None:
                instance.endpoint = extract_endpoint(service)
        except Exception as e:
            logger.warning(f"[DB] Could not read service of {name}: {e}")

        return instance

    async def list_databases(self) -> List[DatabaseInstance]:
        """
        List every managed instance.

        A failure decorating one instance leaves its credential and endpoint
        fields empty instead of failing the listing.
        """
        statefulsets = await self.k8s.list_statefulsets(
            get_management_selector(self.settings.managed_by_label)
        )
        return [await self._describe(sts) for sts in statefulsets]

    async def get_database(self, name: str) -> DatabaseInstance:
        statefulset = await self.k8s.read_statefulset(get_statefulset_name(name))
        if statefulset is None:
            raise NotFoundError()
        return await self._describe(statefulset)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_database(self, name: str) -> None:
        """
        Tear down an instance and its data.

        The StatefulSet is deleted first (waiting for pod termination), then
        the dependent resources and the PVC. Backups in object storage are
        removed in the background.

        Raises:
            NotFoundError: If the StatefulSet does not exist
        """
        k8s = self.k8s
        statefulset = await k8s.read_statefulset(get_statefulset_name(name))
        if statefulset is None:
            raise NotFoundError()

        # Without a known engine the PVC name and prefix ownership are unknown
        labels = statefulset.metadata.labels or {}
        strategy: Optional[DatabaseStrategy] = None
        try:
            strategy = get_strategy(labels.get(ENGINE_LABEL, ""))
        except UnknownEngineError:
            logger.warning(
                f"[DB] Unknown engine for {name}, skipping PVC and backup cleanup"
            )

        internal_name = None
        try:
            internal_name = await self.get_internal_name(name)
        except NotFoundError:
            logger.warning(f"[DB] No credentials for {name}, skipping backup cleanup")

        logger.info(f"[DB] Deleting database: {name}")
        await k8s.delete_statefulset(get_statefulset_name(name), wait_for_pods=True)

        dependents = [
            ("service", k8s.delete_service, get_service_name(name)),
            ("secret", k8s.delete_secret, get_secret_name(name)),
            ("cronjob", k8s.delete_cronjob, get_backup_cronjob_name(name)),
        ]
        if strategy is not None:
            dependents.append(
                ("pvc", k8s.delete_pvc, get_pvc_name(name, strategy.volume_name()))
            )
        for kind, delete, resource_name in dependents:
            try:
                await delete(resource_name)
            except Exception as e:
                logger.error(f"[DB] Failed to delete {kind} {resource_name}: {e}")

        # Engines without scheduled backups share a fixed internal name, so their
        # prefix is not owned by this instance
        if internal_name and strategy is not None and strategy.has_scheduled_backup:
            task = asyncio.create_task(self._cleanup_backups(name, internal_name))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        logger.info(f"[DB] ✅ Database {name} deleted")

    async def _cleanup_backups(self, name: str, internal_name: str) -> None:
        try:
            deleted = await self.s3.delete_backups_folder(internal_name)
            logger.info(f"[DB] Removed {deleted} backups of {name}")
        except Exception as e:
            logger.error(f"[DB] ❌ Failed to remove backups of {name}: {e}", exc_info=True)


# Global instance - lazily initialized
_database_manager: Optional[DatabaseManager] = None


def get_database_manager() -> DatabaseManager:
    """Get or create the global DatabaseManager instance."""
    global _database_manager
    if _database_manager is None:
        _database_manager = DatabaseManager()
    return _database_manager

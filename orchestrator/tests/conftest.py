"""
Test configuration and fixtures for pytest.

Provides an in-memory Kubernetes gateway, mocked S3 manager and settings so the
lifecycle and backup services run without a cluster or object store.
"""

import base64
import copy
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest

# Add the orchestrator directory to sys.path
orchestrator_dir = Path(__file__).parent.parent
sys.path.insert(0, str(orchestrator_dir))


def pytest_configure(config):
    """
    Pytest hook called before test collection.
    Sets up test environment variables and registers custom markers.
    """
    # Set required settings BEFORE any dataforge imports
    os.environ["S3_ENDPOINT"] = "http://minio.test:9000"
    os.environ["S3_ACCESS_KEY"] = "test-access-key"
    os.environ["S3_SECRET_KEY"] = "test-secret-key"
    os.environ["S3_BUCKET"] = "test-backups"
    os.environ["NAMESPACE"] = "dataforge-test"

    from dataforge.config import get_settings
    get_settings.cache_clear()

    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "kubernetes: mark test as requiring Kubernetes")


class FakeKubernetesClient:
    """
    In-memory stand-in for KubernetesClient.

    Mirrors the gateway contract: creates raise ApiException(409) on
    duplicates, reads return None when absent, deletes ignore absence.
    Errors can be injected per method through `failures`.
    """

    def __init__(self, namespace: str = "dataforge-test"):
        self.namespace = namespace
        self.secrets: Dict[str, object] = {}
        self.services: Dict[str, object] = {}
        self.statefulsets: Dict[str, object] = {}
        self.cronjobs: Dict[str, object] = {}
        self.jobs: Dict[str, object] = {}
        self.pvcs = set()
        self.deleted: List[str] = []
        self.failures: Dict[str, Exception] = {}

        # Exec/log behaviour
        self.exec_result = (0, "", "")
        self.exec_calls: List[tuple] = []
        self.dump_chunks: List[bytes] = []
        self.dump_error: Optional[Exception] = None
        self.log_chunks: List[bytes] = []
        self.stdin_received: List[bytes] = []
        self.stdin_commands: List[list] = []
        self.stdin_error: Optional[Exception] = None

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    @staticmethod
    def _conflict():
        from kubernetes.client.rest import ApiException
        return ApiException(status=409, reason="AlreadyExists")

    def _create(self, store: dict, obj, method: str) -> None:
        name = obj.metadata.name
        if name in store:
            raise self._conflict()
        self._maybe_fail(method)
        store[name] = copy.deepcopy(obj)

    def _delete(self, store, name: str, method: str) -> None:
        self._maybe_fail(method)
        if isinstance(store, set):
            store.discard(name)
        else:
            store.pop(name, None)
        self.deleted.append(name)

    # Secrets
    async def create_secret(self, secret):
        self._create(self.secrets, secret, "create_secret")
        stored = self.secrets[secret.metadata.name]
        stored.data = {
            key: base64.b64encode(value.encode()).decode()
            for key, value in (secret.string_data or {}).items()
        }

    async def ensure_secret(self, secret):
        self._maybe_fail("ensure_secret")
        self.secrets.pop(secret.metadata.name, None)
        await self.create_secret(secret)

    async def read_secret(self, name):
        self._maybe_fail("read_secret")
        return self.secrets.get(name)

    async def delete_secret(self, name):
        self._delete(self.secrets, name, "delete_secret")

    # Services
    async def create_service(self, service):
        self._create(self.services, service, "create_service")

    async def read_service(self, name):
        self._maybe_fail("read_service")
        return self.services.get(name)

    async def delete_service(self, name):
        self._delete(self.services, name, "delete_service")

    # StatefulSets
    async def create_statefulset(self, statefulset):
        self._create(self.statefulsets, statefulset, "create_statefulset")
        for template in statefulset.spec.volume_claim_templates or []:
            self.pvcs.add(f"{template.metadata.name}-{statefulset.metadata.name}-0")

    async def read_statefulset(self, name):
        self._maybe_fail("read_statefulset")
        return self.statefulsets.get(name)

    async def list_statefulsets(self, label_selector):
        key, _, value = label_selector.partition("=")
        return [
            sts for sts in self.statefulsets.values()
            if (sts.metadata.labels or {}).get(key) == value
        ]

    async def delete_statefulset(self, name, wait_for_pods=True):
        self._delete(self.statefulsets, name, "delete_statefulset")

    # CronJobs / Jobs
    async def create_cronjob(self, cronjob):
        self._create(self.cronjobs, cronjob, "create_cronjob")

    async def read_cronjob(self, name):
        return self.cronjobs.get(name)

    async def delete_cronjob(self, name):
        self._delete(self.cronjobs, name, "delete_cronjob")

    async def create_job(self, job):
        self._create(self.jobs, job, "create_job")

    async def delete_job(self, name):
        self._delete(self.jobs, name, "delete_job")

    # PVCs
    async def delete_pvc(self, name):
        self._delete(self.pvcs, name, "delete_pvc")

    # Exec & logs (blocking producers, called from worker threads)
    async def exec_command(self, pod_name, container, command):
        self.exec_calls.append((pod_name, container, command))
        self._maybe_fail("exec_command")
        return self.exec_result

    def stream_exec_stdout(self, pod_name, container, command, relay):
        self.exec_calls.append((pod_name, container, command))
        for chunk in self.dump_chunks:
            if not relay.put(chunk):
                return
        if self.dump_error is not None:
            raise self.dump_error

    def exec_with_stdin(self, pod_name, container, command, chunks, cancel_event=None):
        self.stdin_commands.append(command)
        for chunk in chunks:
            self.stdin_received.append(chunk)
        if self.stdin_error is not None:
            raise self.stdin_error

    def stream_pod_logs(self, pod_name, container, relay, tail_lines=50, chunk_size=65536):
        for chunk in self.log_chunks:
            if not relay.put(chunk):
                return


@pytest.fixture
def settings():
    """Settings built from the test environment."""
    from dataforge.config import get_settings
    return get_settings()


@pytest.fixture
def fake_k8s():
    return FakeKubernetesClient()


@pytest.fixture
def mock_s3():
    """S3Manager double with async methods."""
    s3 = Mock()
    s3.list_backups = AsyncMock(return_value=[])
    s3.delete_backup = AsyncMock()
    s3.delete_backups_folder = AsyncMock(return_value=0)
    s3.prune_backups = AsyncMock(return_value=0)
    s3.open_backup_stream = AsyncMock()
    return s3


@pytest.fixture
def database_manager(fake_k8s, mock_s3, settings):
    from dataforge.services.database_manager import DatabaseManager
    return DatabaseManager(k8s_client=fake_k8s, s3_manager=mock_s3, settings=settings)


@pytest.fixture
def backup_service(database_manager):
    from dataforge.services.backup_service import BackupService
    return BackupService(database_manager=database_manager)

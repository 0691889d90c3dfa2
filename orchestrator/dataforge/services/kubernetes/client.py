"""
Kubernetes Client for Managing Database Instances

Thin gateway over the Kubernetes API scoped to the configured namespace. Every
blocking call of the official client runs in a worker thread via
asyncio.to_thread. Deletes treat "already absent" (404) as success; reads return
None for absent resources so callers decide what absence means.

Exec and log channels are exposed as blocking producer functions designed to run
inside a worker thread (see services.streams.relay_from_thread).
"""

import asyncio
import logging
import threading
from typing import Iterable, List, Optional, Tuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream

from ..errors import ChannelFailureError
from ..streams import ByteRelay

logger = logging.getLogger(__name__)

# Seconds a websocket update() blocks waiting for frames
_WS_POLL_TIMEOUT = 1


class KubernetesClient:
    """
    Manages the Kubernetes resources backing database instances.

    Covers Secrets, Services, StatefulSets, CronJobs, Jobs and PVCs in a single
    namespace, plus exec and log channels against pod containers.
    """

    def __init__(self):
        """Initialize Kubernetes client with in-cluster config or kubeconfig."""
        from ...config import get_settings

        self.settings = get_settings()

        if self.settings.kubeconfig:
            config.load_kube_config(config_file=self.settings.kubeconfig)
            logger.info(f"Loaded kubeconfig from {self.settings.kubeconfig}")
        else:
            try:
                # Try in-cluster config first (for production)
                config.load_incluster_config()
                logger.info("Loaded in-cluster Kubernetes configuration")
            except config.ConfigException:
                try:
                    # Fall back to ~/.kube/config (for development)
                    config.load_kube_config()
                    logger.info("Loaded kubeconfig for development")
                except config.ConfigException as e:
                    logger.error(f"Failed to load Kubernetes config: {e}")
                    raise RuntimeError("Cannot load Kubernetes configuration") from e

        self.apps_v1 = client.AppsV1Api()
        self.core_v1 = client.CoreV1Api()
        self.batch_v1 = client.BatchV1Api()

        self.namespace = self.settings.namespace

        logger.info(f"Kubernetes client initialized - Namespace: {self.namespace}")

    # =========================================================================
    # SECRETS
    # =========================================================================

    async def create_secret(self, secret: client.V1Secret) -> None:
        """Create a Secret. A 409 propagates as ApiException."""
        await asyncio.to_thread(
            self.core_v1.create_namespaced_secret,
            namespace=self.namespace,
            body=secret
        )
        logger.info(f"[K8S] ✅ Created secret: {secret.metadata.name}")

    async def ensure_secret(self, secret: client.V1Secret) -> None:
        """
        Create a Secret, or patch its stringData if it already exists.

        A failed patch is logged and tolerated: the existing Secret keeps its
        previous values.
        """
        secret_name = secret.metadata.name
        try:
            await self.create_secret(secret)
        except ApiException as e:
            if e.status != 409:
                raise
            logger.info(f"[K8S] Secret {secret_name} exists, updating...")
            try:
                await asyncio.to_thread(
                    self.core_v1.patch_namespaced_secret,
                    name=secret_name,
                    namespace=self.namespace,
                    body={"stringData": secret.string_data}
                )
                logger.info(f"[K8S] ✅ Updated secret: {secret_name}")
            except ApiException as patch_error:
                logger.warning(f"[K8S] Could not update secret {secret_name}: {patch_error.status} {patch_error.reason}")

    async def read_secret(self, name: str) -> Optional[client.V1Secret]:
        try:
            return await asyncio.to_thread(
                self.core_v1.read_namespaced_secret,
                name=name,
                namespace=self.namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    async def delete_secret(self, name: str) -> None:
        try:
            await asyncio.to_thread(
                self.core_v1.delete_namespaced_secret,
                name=name,
                namespace=self.namespace
            )
            logger.info(f"[K8S] Deleted secret: {name}")
        except ApiException as e:
            if e.status != 404:
                raise

    # =========================================================================
    # SERVICES
    # =========================================================================

    async def create_service(self, service: client.V1Service) -> None:
        await asyncio.to_thread(
            self.core_v1.create_namespaced_service,
            namespace=self.namespace,
            body=service
        )
        logger.info(f"[K8S] ✅ Created service: {service.metadata.name}")

    async def read_service(self, name: str) -> Optional[client.V1Service]:
        try:
            return await asyncio.to_thread(
                self.core_v1.read_namespaced_service,
                name=name,
                namespace=self.namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    async def delete_service(self, name: str) -> None:
        try:
            await asyncio.to_thread(
                self.core_v1.delete_namespaced_service,
                name=name,
                namespace=self.namespace
            )
            logger.info(f"[K8S] Deleted service: {name}")
        except ApiException as e:
            if e.status != 404:
                raise

    # =========================================================================
    # STATEFULSETS
    # =========================================================================

    async def create_statefulset(self, statefulset: client.V1StatefulSet) -> None:
        await asyncio.to_thread(
            self.apps_v1.create_namespaced_stateful_set,
            namespace=self.namespace,
            body=statefulset
        )
        logger.info(f"[K8S] ✅ Created statefulset: {statefulset.metadata.name}")

    async def read_statefulset(self, name: str) -> Optional[client.V1StatefulSet]:
        try:
            return await asyncio.to_thread(
                self.apps_v1.read_namespaced_stateful_set,
                name=name,
                namespace=self.namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    async def list_statefulsets(self, label_selector: str) -> List[client.V1StatefulSet]:
        result = await asyncio.to_thread(
            self.apps_v1.list_namespaced_stateful_set,
            namespace=self.namespace,
            label_selector=label_selector
        )
        return list(result.items or [])

    async def delete_statefulset(self, name: str, wait_for_pods: bool = True) -> None:
        """
        Delete a StatefulSet.

        With wait_for_pods the deletion uses Foreground propagation, so the
        object stays until its pods are terminated.
        """
        body = client.V1DeleteOptions(
            propagation_policy="Foreground" if wait_for_pods else "Background"
        )
        try:
            await asyncio.to_thread(
                self.apps_v1.delete_namespaced_stateful_set,
                name=name,
                namespace=self.namespace,
                body=body
            )
            logger.info(f"[K8S] Deleted statefulset: {name}")
        except ApiException as e:
            if e.status != 404:
                raise

    # =========================================================================
    # CRONJOBS / JOBS
    # =========================================================================

    async def create_cronjob(self, cronjob: client.V1CronJob) -> None:
        await asyncio.to_thread(
            self.batch_v1.create_namespaced_cron_job,
            namespace=self.namespace,
            body=cronjob
        )
        logger.info(f"[K8S] ✅ Created cronjob: {cronjob.metadata.name}")

    async def read_cronjob(self, name: str) -> Optional[client.V1CronJob]:
        try:
            return await asyncio.to_thread(
                self.batch_v1.read_namespaced_cron_job,
                name=name,
                namespace=self.namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    async def delete_cronjob(self, name: str) -> None:
        try:
            await asyncio.to_thread(
                self.batch_v1.delete_namespaced_cron_job,
                name=name,
                namespace=self.namespace
            )
            logger.info(f"[K8S] Deleted cronjob: {name}")
        except ApiException as e:
            if e.status != 404:
                raise

    async def create_job(self, job: client.V1Job) -> None:
        await asyncio.to_thread(
            self.batch_v1.create_namespaced_job,
            namespace=self.namespace,
            body=job
        )
        logger.info(f"[K8S] ✅ Created job: {job.metadata.name}")

    async def delete_job(self, name: str) -> None:
        try:
            await asyncio.to_thread(
                self.batch_v1.delete_namespaced_job,
                name=name,
                namespace=self.namespace,
                body=client.V1DeleteOptions(propagation_policy="Background")
            )
            logger.info(f"[K8S] Deleted job: {name}")
        except ApiException as e:
            if e.status != 404:
                raise

    # =========================================================================
    # PVCS
    # =========================================================================

    async def delete_pvc(self, name: str) -> None:
        try:
            await asyncio.to_thread(
                self.core_v1.delete_namespaced_persistent_volume_claim,
                name=name,
                namespace=self.namespace
            )
            logger.info(f"[K8S] Deleted PVC: {name}")
        except ApiException as e:
            if e.status != 404:
                raise

    # =========================================================================
    # POD EXEC & LOGS
    # =========================================================================

    def _get_stream_client(self) -> client.CoreV1Api:
        """
        Create a fresh CoreV1Api client for stream operations.

        The kubernetes-python `stream()` function patches the api_client request
        method to use WebSocket. Sharing self.core_v1 would make concurrent
        regular API calls go through the WebSocket-patched method.
        """
        return client.CoreV1Api()

    def _open_exec(self, pod_name: str, container: str, command: List[str], stdin: bool):
        stream_client = self._get_stream_client()
        return stream(
            stream_client.connect_get_namespaced_pod_exec,
            pod_name,
            self.namespace,
            container=container,
            command=command,
            stdin=stdin,
            stdout=True,
            stderr=True,
            tty=False,
            binary=True,
            _preload_content=False
        )

    @staticmethod
    def _exit_code(ws) -> Optional[int]:
        """
        Exit code reported on the exec error channel.

        None when the channel closed without a status, which means the exec
        subsystem lost the process.
        """
        try:
            return ws.returncode
        except Exception as e:
            logger.debug(f"[K8S:EXEC] No exit status on error channel: {e}")
            return None

    @staticmethod
    def _decode(data) -> str:
        if isinstance(data, bytes):
            return data.decode("utf-8", errors="replace")
        return data or ""

    def _check_exit(self, ws, pod_name: str, stderr: List[str]) -> None:
        code = self._exit_code(ws)
        if code != 0:
            detail = "".join(stderr).strip()[-500:]
            logger.error(f"[K8S:EXEC] Command in pod {pod_name} failed (exit {code}): {detail}")
            raise ChannelFailureError(
                f"Command in pod {pod_name} failed with exit code {code}"
            )

    def stream_exec_stdout(
        self,
        pod_name: str,
        container: str,
        command: List[str],
        relay: ByteRelay
    ) -> None:
        """
        Run a command in a pod and put its stdout into `relay`.

        Blocking; run in a worker thread. Raises ChannelFailureError when the
        command exits non-zero or the channel dies, after all stdout received so
        far has been relayed.
        """
        logger.debug(f"[K8S:EXEC] Streaming stdout from pod {pod_name}: {command[0]}...")
        ws = self._open_exec(pod_name, container, command, stdin=False)
        relay.on_cancel(ws.close)
        stderr: List[str] = []
        try:
            while ws.is_open():
                ws.update(timeout=_WS_POLL_TIMEOUT)
                if ws.peek_stdout():
                    if not relay.put(ws.read_stdout()):
                        logger.info(f"[K8S:EXEC] Consumer left, closing exec in pod {pod_name}")
                        return
                if ws.peek_stderr():
                    stderr.append(self._decode(ws.read_stderr()))

            # Frames received together with the close
            while ws.peek_stdout():
                if not relay.put(ws.read_stdout()):
                    return
            if ws.peek_stderr():
                stderr.append(self._decode(ws.read_stderr()))
        finally:
            ws.close()

        if relay.cancelled:
            return
        self._check_exit(ws, pod_name, stderr)

    def exec_with_stdin(
        self,
        pod_name: str,
        container: str,
        command: List[str],
        chunks: Iterable[bytes],
        cancel_event: Optional[threading.Event] = None
    ) -> None:
        """
        Run a command in a pod, writing `chunks` to its stdin.

        Blocking; run in a worker thread. The command must stop reading stdin on
        its own (the exec protocol has no half-close). stdout is discarded and
        stderr is logged. Raises ChannelFailureError on non-zero exit, channel
        loss or cancellation.
        """
        cancel_event = cancel_event or threading.Event()
        ws = self._open_exec(pod_name, container, command, stdin=True)
        stderr: List[str] = []

        def drain() -> None:
            if ws.peek_stdout():
                ws.read_stdout()
            if ws.peek_stderr():
                text = self._decode(ws.read_stderr())
                stderr.append(text)
                for line in text.splitlines():
                    logger.info(f"[K8S:EXEC] {pod_name}: {line}")

        try:
            for chunk in chunks:
                if cancel_event.is_set():
                    raise ChannelFailureError("Command input cancelled")
                if not ws.is_open():
                    # Process exited before consuming all input
                    break
                ws.write_stdin(chunk)
                ws.update(timeout=0)
                drain()

            while ws.is_open():
                if cancel_event.is_set():
                    raise ChannelFailureError("Command cancelled")
                ws.update(timeout=_WS_POLL_TIMEOUT)
                drain()
            drain()
        except ChannelFailureError:
            raise
        except Exception as e:
            logger.error(f"[K8S:EXEC] Channel to pod {pod_name} failed: {e}")
            raise ChannelFailureError(f"Exec channel to pod {pod_name} failed: {e}") from e
        finally:
            ws.close()

        self._check_exit(ws, pod_name, stderr)

    def _run_exec(self, pod_name: str, container: str, command: List[str]) -> Tuple[Optional[int], str, str]:
        ws = self._open_exec(pod_name, container, command, stdin=False)
        stdout: List[str] = []
        stderr: List[str] = []
        try:
            while ws.is_open():
                ws.update(timeout=_WS_POLL_TIMEOUT)
                if ws.peek_stdout():
                    stdout.append(self._decode(ws.read_stdout()))
                if ws.peek_stderr():
                    stderr.append(self._decode(ws.read_stderr()))
            if ws.peek_stdout():
                stdout.append(self._decode(ws.read_stdout()))
            if ws.peek_stderr():
                stderr.append(self._decode(ws.read_stderr()))
        finally:
            ws.close()
        return self._exit_code(ws), "".join(stdout), "".join(stderr)

    async def exec_command(
        self,
        pod_name: str,
        container: str,
        command: List[str]
    ) -> Tuple[Optional[int], str, str]:
        """
        Run a short command in a pod.

        Returns:
            (exit code or None if unknown, stdout, stderr)
        """
        return await asyncio.to_thread(self._run_exec, pod_name, container, command)

    def stream_pod_logs(
        self,
        pod_name: str,
        container: str,
        relay: ByteRelay,
        tail_lines: int = 50,
        chunk_size: int = 65536
    ) -> None:
        """
        Follow a container's log and put it into `relay`.

        Blocking; run in a worker thread. Ends when the container stops or the
        relay is cancelled (cancellation closes the HTTP response).
        """
        resp = self.core_v1.read_namespaced_pod_log(
            name=pod_name,
            namespace=self.namespace,
            container=container,
            follow=True,
            tail_lines=tail_lines,
            timestamps=True,
            _preload_content=False
        )
        relay.on_cancel(resp.close)
        try:
            for chunk in resp.stream(chunk_size):
                if not relay.put(chunk):
                    logger.info(f"[K8S] Log consumer left, closing log stream of pod {pod_name}")
                    return
        finally:
            resp.release_conn()


# Global instance - lazily initialized
_k8s_client_instance: Optional[KubernetesClient] = None


def get_k8s_client() -> KubernetesClient:
    """Get or create the global Kubernetes client instance."""
    global _k8s_client_instance
    if _k8s_client_instance is None:
        _k8s_client_instance = KubernetesClient()
    return _k8s_client_instance

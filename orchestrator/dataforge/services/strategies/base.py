"""
Base database strategy interface.

Every engine DataForge supports implements DatabaseStrategy. The strategy holds
all engine-specific decisions (image, port, volumes, env injection, probes,
credential rules, dump/restore command lines) so the Kubernetes builders and the
lifecycle/backup services never branch on the engine tag.

Strategies are stateless and perform no I/O.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from kubernetes import client

from ...utils.credentials import generate_password


@dataclass
class BackupJobSpec:
    """Container definition for the automated backup CronJob."""
    image: str
    command: List[str]
    env: List[client.V1EnvVar] = field(default_factory=list)


def secret_env(env_name: str, secret_name: str, key: str) -> client.V1EnvVar:
    """Env var sourced from a key of a Secret."""
    return client.V1EnvVar(
        name=env_name,
        value_from=client.V1EnvVarSource(
            secret_key_ref=client.V1SecretKeySelector(name=secret_name, key=key)
        )
    )


class DatabaseStrategy(ABC):
    """
    Abstract base class for database engine strategies.

    Subclasses set `engine`, `default_version` and `dump_extension` and implement
    the abstract methods.
    """

    engine: str = ""
    default_version: str = ""
    # File extension for dumps produced by dump_command()
    dump_extension: str = "dump"
    # Whether backup_job_spec() renders a scheduled backup
    has_scheduled_backup: bool = True

    def image_for(self, version: Optional[str]) -> str:
        """Image for the requested version, falling back to the engine default."""
        return self._image_name(version or self.default_version)

    @abstractmethod
    def _image_name(self, version: str) -> str:
        pass

    @abstractmethod
    def default_port(self) -> int:
        """Port the engine listens on (container port and Service port)."""
        pass

    @abstractmethod
    def volume_name(self) -> str:
        """Name of the volumeClaimTemplate, and prefix of the resulting PVC."""
        pass

    @abstractmethod
    def container_env(self, secret_name: str) -> List[client.V1EnvVar]:
        """Env vars injecting credentials from the instance Secret."""
        pass

    @abstractmethod
    def volume_mounts(self) -> List[client.V1VolumeMount]:
        pass

    @abstractmethod
    def container_args(self) -> List[str]:
        pass

    @abstractmethod
    def readiness_probe(self) -> client.V1Probe:
        pass

    @abstractmethod
    def backup_job_spec(
        self,
        name: str,
        secret_name: str,
        db_name: str,
        version: Optional[str]
    ) -> Optional[BackupJobSpec]:
        """
        Backup CronJob container, or None when the engine has no automated backup.

        The command must upload to s3://$S3_BUCKET/<db_name>/backup_<timestamp>.<ext>;
        S3_* env vars are appended by the builder from the global S3 secret.
        """
        pass

    @abstractmethod
    def normalize_database_name(self, requested: str) -> str:
        """
        Normalize a user-provided database name for the engine.

        Must be deterministic and idempotent.
        """
        pass

    @abstractmethod
    def generate_username(self) -> str:
        pass

    def generate_password(self, length: int = 16) -> str:
        return generate_password(length)

    @abstractmethod
    def dump_command(self) -> List[str]:
        """Command writing a full dump to stdout inside the database container."""
        pass

    @abstractmethod
    def pre_restore_command(self) -> List[str]:
        """Best-effort command run before a restore (terminate client connections)."""
        pass

    @abstractmethod
    def restore_command(self) -> List[str]:
        """Command reading a dump produced by dump_command() from stdin."""
        pass

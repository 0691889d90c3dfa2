from typing import List, Optional

from kubernetes import client

from .base import BackupJobSpec, DatabaseStrategy, secret_env

# redis-cli reads the password from REDISCLI_AUTH, which keeps it off the command line
_CLI = 'REDISCLI_AUTH="$REDIS_PASSWORD" redis-cli -h localhost'


class RedisStrategy(DatabaseStrategy):
    """
    Redis with AOF persistence.

    Redis has a single keyspace per instance here, so the internal name is always
    logical database "0". Automated CronJob backups are not implemented; ad-hoc
    RDB dumps and restores are.
    """

    engine = "redis"
    default_version = "7"
    dump_extension = "rdb"
    has_scheduled_backup = False

    def _image_name(self, version: str) -> str:
        return f"redis:{version}-alpine"

    def default_port(self) -> int:
        return 6379

    def volume_name(self) -> str:
        return "redis-data"

    def container_env(self, secret_name: str) -> List[client.V1EnvVar]:
        return [secret_env("REDIS_PASSWORD", secret_name, "password")]

    def volume_mounts(self) -> List[client.V1VolumeMount]:
        return [client.V1VolumeMount(name=self.volume_name(), mount_path="/data")]

    def container_args(self) -> List[str]:
        return [
            "redis-server",
            "--appendonly", "yes",
            "--requirepass", "$(REDIS_PASSWORD)",
            # restore_command() needs DEBUG RELOAD and CONFIG SET dbfilename,
            # both only from inside the pod
            "--enable-debug-command", "local",
            "--enable-protected-configs", "local",
        ]

    def readiness_probe(self) -> client.V1Probe:
        return client.V1Probe(
            tcp_socket=client.V1TCPSocketAction(port=6379),
            initial_delay_seconds=5,
            period_seconds=5,
            failure_threshold=3
        )

    def backup_job_spec(
        self,
        name: str,
        secret_name: str,
        db_name: str,
        version: Optional[str]
    ) -> Optional[BackupJobSpec]:
        return None

    def normalize_database_name(self, requested: str) -> str:
        return "0"

    def generate_username(self) -> str:
        return "default"

    def dump_command(self) -> List[str]:
        return ["/bin/sh", "-c", f"{_CLI} --rdb -"]

    def pre_restore_command(self) -> List[str]:
        return ["/bin/sh", "-c", f"{_CLI} CLIENT KILL TYPE normal SKIPME yes"]

    def restore_command(self) -> List[str]:
        # Load the RDB from stdin in place of the live dataset, then rewrite the
        # AOF so the restored data survives a restart. redis-cli can exit 0 on an
        # error reply, so the switch to restore.rdb is checked by its output.
        script = (
            "set -e; "
            "cat > /data/restore.rdb; "
            f'test "$({_CLI} CONFIG SET dbfilename restore.rdb)" = OK; '
            f"{_CLI} DEBUG RELOAD NOSAVE; "
            f"{_CLI} CONFIG SET dbfilename dump.rdb; "
            f"{_CLI} BGREWRITEAOF; "
            "rm -f /data/restore.rdb"
        )
        return ["/bin/sh", "-c", script]

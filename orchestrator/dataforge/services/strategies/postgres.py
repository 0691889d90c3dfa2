import re
from typing import List, Optional

from kubernetes import client

from .base import BackupJobSpec, DatabaseStrategy, secret_env
from ...utils.credentials import generate_password

# Anything outside [A-Za-z0-9_] is illegal in an unquoted SQL identifier
_ILLEGAL_IDENTIFIER_CHARS = re.compile(r"[^A-Za-z0-9_]")


class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL on the official alpine images."""

    engine = "postgres"
    default_version = "17"
    dump_extension = "sql"

    def _image_name(self, version: str) -> str:
        return f"postgres:{version}-alpine"

    def default_port(self) -> int:
        return 5432

    def volume_name(self) -> str:
        return "postgres-data"

    def container_env(self, secret_name: str) -> List[client.V1EnvVar]:
        return [
            secret_env("POSTGRES_PASSWORD", secret_name, "password"),
            secret_env("POSTGRES_USER", secret_name, "username"),
            secret_env("POSTGRES_DB", secret_name, "db_name"),
            # Keep data in a subdirectory; block volumes ship a lost+found folder
            client.V1EnvVar(name="PGDATA", value="/var/lib/postgresql/data/pgdata"),
        ]

    def volume_mounts(self) -> List[client.V1VolumeMount]:
        return [
            client.V1VolumeMount(name=self.volume_name(), mount_path="/var/lib/postgresql/data")
        ]

    def container_args(self) -> List[str]:
        return []

    def readiness_probe(self) -> client.V1Probe:
        return client.V1Probe(
            _exec=client.V1ExecAction(
                command=["/bin/sh", "-c", "pg_isready -h 127.0.0.1 -p 5432"]
            ),
            initial_delay_seconds=5,
            period_seconds=10,
            failure_threshold=3
        )

    def backup_job_spec(
        self,
        name: str,
        secret_name: str,
        db_name: str,
        version: Optional[str]
    ) -> BackupJobSpec:
        # pg_dump -> aws cli -> S3, streamed without touching the job's disk
        script = (
            "set -o pipefail && "
            "apk add --no-cache aws-cli && "
            "export AWS_ACCESS_KEY_ID=$S3_ACCESS_KEY && "
            "export AWS_SECRET_ACCESS_KEY=$S3_SECRET_KEY && "
            "export AWS_DEFAULT_REGION=$S3_REGION && "
            f"pg_dump -h {name}-service -U $DB_USER --clean --if-exists $DB_NAME "
            "| aws s3 cp - s3://$S3_BUCKET/$DB_NAME/backup_$(date +%Y-%m-%d_%H-%M-%S).sql "
            "--endpoint-url $S3_ENDPOINT"
        )

        return BackupJobSpec(
            image=self.image_for(version),
            command=["/bin/sh", "-c", script],
            env=[
                secret_env("DB_USER", secret_name, "username"),
                secret_env("PGPASSWORD", secret_name, "password"),
                client.V1EnvVar(name="DB_NAME", value=db_name),
            ]
        )

    def normalize_database_name(self, requested: str) -> str:
        return _ILLEGAL_IDENTIFIER_CHARS.sub("_", requested)

    def generate_username(self) -> str:
        return f"user_{generate_password(6)}"

    def dump_command(self) -> List[str]:
        # --clean --if-exists makes the dump replace existing objects on restore
        return [
            "/bin/sh", "-c",
            'PGPASSWORD="$POSTGRES_PASSWORD" pg_dump -h localhost -U "$POSTGRES_USER" '
            '--clean --if-exists "$POSTGRES_DB"'
        ]

    def pre_restore_command(self) -> List[str]:
        return [
            "/bin/sh", "-c",
            'PGPASSWORD="$POSTGRES_PASSWORD" psql -h localhost -U "$POSTGRES_USER" -d "$POSTGRES_DB" -c '
            '"SELECT pg_terminate_backend(pid) FROM pg_stat_activity '
            'WHERE pid <> pg_backend_pid() AND datname = current_database();"'
        ]

    def restore_command(self) -> List[str]:
        return [
            "/bin/sh", "-c",
            'PGPASSWORD="$POSTGRES_PASSWORD" psql -h localhost -U "$POSTGRES_USER" -d "$POSTGRES_DB" '
            '-v ON_ERROR_STOP=1 --quiet'
        ]

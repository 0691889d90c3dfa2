"""
Unit tests for resource naming and credential generation.
"""

import string

import pytest

from dataforge.utils import (
    generate_password,
    get_backup_cronjob_name,
    get_manual_backup_job_name,
    get_primary_pod_name,
    get_pvc_name,
    get_secret_name,
    get_service_name,
    get_statefulset_name,
)
from dataforge.utils.credentials import PASSWORD_ALPHABET


@pytest.mark.unit
class TestResourceNaming:
    """Every resource name derives from the instance name."""

    def test_resource_set_names(self):
        assert get_secret_name("shop-db") == "shop-db-secret"
        assert get_service_name("shop-db") == "shop-db-service"
        assert get_statefulset_name("shop-db") == "shop-db-statefulset"
        assert get_backup_cronjob_name("shop-db") == "shop-db-backup"

    def test_pod_and_pvc_names(self):
        assert get_primary_pod_name("shop-db") == "shop-db-statefulset-0"
        assert get_pvc_name("shop-db", "postgres-data") == "postgres-data-shop-db-statefulset-0"

    def test_manual_backup_job_name(self):
        assert get_manual_backup_job_name("shop-db", 1700000000000) == "shop-db-manual-backup-1700000000000"

    def test_manual_backup_job_name_defaults_to_now(self):
        name = get_manual_backup_job_name("shop-db")
        assert name.startswith("shop-db-manual-backup-")
        assert name.rsplit("-", 1)[1].isdigit()


@pytest.mark.unit
class TestGeneratePassword:
    """Test CSPRNG password generation."""

    def test_default_length(self):
        assert len(generate_password()) == 16

    def test_alphabet_is_alphanumeric(self):
        assert set(PASSWORD_ALPHABET) == set(string.ascii_letters + string.digits)
        assert set(generate_password(200)) <= set(PASSWORD_ALPHABET)

    def test_passwords_differ(self):
        assert generate_password(32) != generate_password(32)

    def test_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            generate_password(0)

"""Tests for secret reading and content-addressed versioning."""
import hashlib
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as gcp_exceptions

from rollwave.domains.commands import Deadline
from rollwave.domains.config_loader import Configuration, SecretsConfig
from rollwave.domains.errors import CommandError, ConfigError, SecretCreateError, SecretSourceError
from rollwave.domains.models import LogicalSecret
from rollwave.workflows.secret_operations import (
    content_hash,
    ensure_secrets,
    load_secrets,
    physical_secret_name,
    read_env_secrets,
    read_gcp_secrets,
)


def _hash8(value):
    return hashlib.sha256(value.encode()).hexdigest()[:8]


class TestReadEnvSecrets:
    """Test collection of ROLLWAVE_SECRET_* variables."""

    def test_collects_prefixed_variables_sorted(self):
        environ = {
            "ROLLWAVE_SECRET_b_key": "2",
            "ROLLWAVE_SECRET_A_KEY": "1",
            "PATH": "/usr/bin",
            "ROLLWAVE_REGISTRY_USER": "bot",
        }

        secrets = read_env_secrets(environ)

        assert [s.key for s in secrets] == ["A_KEY", "b_key"]
        assert secrets[0].value == "1"

    def test_empty_value_is_kept(self):
        secrets = read_env_secrets({"ROLLWAVE_SECRET_EMPTY": ""})

        assert secrets == [LogicalSecret("EMPTY", "")]

    def test_bare_prefix_ignored(self):
        assert read_env_secrets({"ROLLWAVE_SECRET_": "x"}) == []

    def test_repr_masks_value(self):
        secret = LogicalSecret("DB_PASSWORD", "hunter2")

        assert "hunter2" not in repr(secret)
        assert "7 chars" in repr(secret)


class TestPhysicalName:
    """Test derivation of versioned secret names."""

    def test_name_with_prefix(self):
        assert physical_secret_name("demo", "prod", "API", "abc") == f"demo_prod_API_{_hash8('abc')}"

    def test_name_without_prefix(self):
        assert physical_secret_name("demo", "", "DB_PASSWORD", "abc123") == f"demo_DB_PASSWORD_{_hash8('abc123')}"

    def test_hash_is_eight_lowercase_hex(self):
        digest = content_hash("anything")

        assert len(digest) == 8
        assert digest == digest.lower()
        int(digest, 16)

    def test_different_values_yield_different_names(self):
        assert physical_secret_name("s", "", "K", "a") != physical_secret_name("s", "", "K", "b")


class TestEnsureSecrets:
    """Test syncing logical secrets into the store."""

    def test_creates_missing_secret(self, swarm):
        secrets = [LogicalSecret("DB_PASSWORD", "abc123")]

        result = ensure_secrets(secrets, "demo", "", swarm)

        expected = f"demo_DB_PASSWORD_{_hash8('abc123')}"
        assert result.mapping == {"DB_PASSWORD": expected}
        assert result.created == [expected]
        assert swarm.names() == [expected]

    def test_second_run_creates_nothing(self, swarm):
        secrets = [LogicalSecret("DB_PASSWORD", "abc123"), LogicalSecret("API", "k")]

        first = ensure_secrets(secrets, "demo", "prod", swarm)
        second = ensure_secrets(secrets, "demo", "prod", swarm)

        assert first.mapping == second.mapping
        assert second.created == []
        assert sorted(second.existing) == sorted(first.created)
        assert len(swarm.created) == 2

    def test_changed_value_creates_new_version(self, swarm):
        ensure_secrets([LogicalSecret("API", "old")], "demo", "", swarm)
        result = ensure_secrets([LogicalSecret("API", "new")], "demo", "", swarm)

        assert result.mapping["API"].endswith(_hash8("new"))
        assert len(swarm.names()) == 2

    def test_dry_run_touches_nothing(self, swarm):
        secrets = [LogicalSecret("API", "k")]

        result = ensure_secrets(secrets, "demo", "", swarm, dry_run=True)

        assert result.planned == [result.mapping["API"]]
        assert result.created == []
        assert swarm.created == []
        assert swarm.exists_calls == []

    def test_dry_run_mapping_matches_live(self, swarm):
        secrets = [LogicalSecret("A", "1"), LogicalSecret("B", "2")]

        planned = ensure_secrets(secrets, "demo", "x", swarm, dry_run=True)
        live = ensure_secrets(secrets, "demo", "x", swarm)

        assert planned.mapping == live.mapping

    def test_create_failure_aborts(self, swarm):
        secrets = [LogicalSecret("A", "1"), LogicalSecret("B", "2")]
        failing = physical_secret_name("demo", "", "A", "1")
        swarm.fail_create.add(failing)

        with pytest.raises(SecretCreateError) as exc_info:
            ensure_secrets(secrets, "demo", "", swarm)

        assert exc_info.value.physical_name == failing
        assert swarm.created == []

    def test_concurrent_create_counts_as_existing(self, swarm):
        name = physical_secret_name("demo", "", "A", "1")
        swarm.secret_exists = lambda _name: False
        swarm.add_secret(name, "1")

        result = ensure_secrets([LogicalSecret("A", "1")], "demo", "", swarm)

        assert result.existing == [name]
        assert result.created == []

    def test_empty_input(self, swarm):
        result = ensure_secrets([], "demo", "", swarm)

        assert result.mapping == {}

    def test_empty_stack_rejected(self, swarm):
        with pytest.raises(ConfigError):
            ensure_secrets([LogicalSecret("A", "1")], "", "", swarm)


class TestGcpSource:
    """Test the Secret Manager source with a mocked client."""

    def test_fetches_each_key_once(self):
        client = MagicMock()
        client.fetch_secret.side_effect = lambda name, project, timeout=None: f"value-of-{name}"

        secrets = read_gcp_secrets(["B", "A", "B"], "my-project", client=client)

        assert [s.key for s in secrets] == ["A", "B"]
        assert secrets[1].value == "value-of-B"
        assert client.fetch_secret.call_count == 2

    def test_each_fetch_gets_remaining_deadline(self):
        client = MagicMock()
        client.fetch_secret.return_value = "v"
        deadline = MagicMock()
        deadline.remaining.side_effect = [9.0, 4.0]

        read_gcp_secrets(["A", "B"], "p", client=client, deadline=deadline)

        timeouts = [c.kwargs["timeout"] for c in client.fetch_secret.call_args_list]
        assert timeouts == [9.0, 4.0]

    def test_expired_deadline_stops_fetching(self):
        client = MagicMock()
        client.fetch_secret.return_value = "v"
        deadline = Deadline(1)
        deadline._expires_at -= 10

        with pytest.raises(CommandError):
            read_gcp_secrets(["A"], "p", client=client, deadline=deadline)

        client.fetch_secret.assert_not_called()

    def test_missing_project(self):
        with pytest.raises(SecretSourceError) as exc_info:
            read_gcp_secrets(["A"], None, client=MagicMock())

        assert "GCP_PROJECT" in str(exc_info.value)

    def test_missing_secret(self):
        client = MagicMock()
        client.fetch_secret.return_value = None

        with pytest.raises(SecretSourceError) as exc_info:
            read_gcp_secrets(["A"], "p", client=client)

        assert "'A' not found" in str(exc_info.value)

    def test_api_error(self):
        client = MagicMock()
        client.fetch_secret.side_effect = gcp_exceptions.PermissionDenied("denied")

        with pytest.raises(SecretSourceError) as exc_info:
            read_gcp_secrets(["A"], "p", client=client)

        assert "GCP fetch failed for A" in str(exc_info.value)

    def test_load_secrets_selects_gcp(self):
        client = MagicMock()
        client.fetch_secret.return_value = "v"
        cfg = Configuration(secrets=SecretsConfig(source="gcp", keys=["TOKEN"]))

        secrets = load_secrets(cfg, {"GCP_PROJECT": "p", "ROLLWAVE_SECRET_IGNORED": "x"}, gcp_client=client)

        assert secrets == [LogicalSecret("TOKEN", "v")]
        client.fetch_secret.assert_called_once_with("TOKEN", "p", timeout=None)

    def test_load_secrets_defaults_to_env(self):
        secrets = load_secrets(Configuration(), {"ROLLWAVE_SECRET_X": "1"})

        assert secrets == [LogicalSecret("X", "1")]

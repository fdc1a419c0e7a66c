"""Shared fixtures: an in-memory stand-in for the Swarm secret store and orchestrator."""
from pathlib import Path

import pytest

from rollwave.domains.errors import BuildError, DeployError, SecretAlreadyExistsError, SecretCreateError, SwarmError
from rollwave.domains.models import RemoteSecretRecord, Service


class FakeSwarm:
    """Records every call; behaves like a single-node swarm."""

    def __init__(self):
        self.secrets = {}  # id -> (name, value)
        self.services = {}  # stack -> [Service]
        self.service_refs = {}  # service id -> [secret id]
        self.tasks = {}  # stack -> [Task]
        self.created = []
        self.deleted = []
        self.deploys = []
        self.exists_calls = []
        self.fail_create = set()
        self.fail_delete = set()
        self.fail_listing = False
        self.fail_deploy = False
        self._next_id = 0

    # helpers for tests
    def add_secret(self, name, value="value"):
        self._next_id += 1
        secret_id = f"sec{self._next_id:03d}"
        self.secrets[secret_id] = (name, value)
        return secret_id

    def add_service(self, stack, name, secret_ids=(), **kwargs):
        service_id = f"svc-{name}"
        self.services.setdefault(stack, []).append(Service(id=service_id, name=name, **kwargs))
        self.service_refs[service_id] = list(secret_ids)
        return service_id

    def names(self):
        return sorted(name for name, _ in self.secrets.values())

    # secret store
    def secret_exists(self, name):
        self.exists_calls.append(name)
        return any(n == name for n, _ in self.secrets.values())

    def create_secret(self, name, value):
        if name in self.fail_create:
            raise SecretCreateError(name, "rpc error: permission denied")
        if any(n == name for n, _ in self.secrets.values()):
            raise SecretAlreadyExistsError(name)
        self.add_secret(name, value)
        self.created.append(name)

    def list_secrets(self, scope):
        if self.fail_listing:
            raise SwarmError("list secrets: Cannot connect to the Docker daemon")
        return [
            RemoteSecretRecord(id=i, name=n)
            for i, (n, _) in self.secrets.items()
            if n.startswith(scope + "_")
        ]

    def delete_secret(self, secret_id):
        if secret_id in self.fail_delete:
            raise SwarmError(f"remove secret {secret_id}: secret is in use")
        del self.secrets[secret_id]
        self.deleted.append(secret_id)

    # orchestrator
    def list_services(self, stack):
        return list(self.services.get(stack, []))

    def list_running_tasks(self, stack):
        return list(self.tasks.get(stack, []))

    def inspect_service_secret_refs(self, service_id):
        return list(self.service_refs.get(service_id, []))

    def deploy(self, manifest_path, stack, variables):
        path = Path(manifest_path)
        self.deploys.append({
            "path": path,
            "stack": stack,
            "variables": dict(variables),
            "content": path.read_text(),
        })
        if self.fail_deploy:
            raise DeployError(f"deploy of stack '{stack}' failed (exit code 1)")


class FakeBuilder:
    """Image builder that records builds instead of calling docker."""

    def __init__(self, fail_service=None):
        self.built = []
        self.logins = []
        self.fail_service = fail_service

    def login_from_env(self, image, environ):
        if environ.get("ROLLWAVE_REGISTRY_USER") and environ.get("ROLLWAVE_REGISTRY_PASSWORD"):
            self.logins.append(image)
            return True
        return False

    def build_and_push(self, spec, tag, base_dir):
        if spec.service_name == self.fail_service:
            raise BuildError(f"docker build failed for {spec.image_name}:{tag} (exit code 1)")
        self.built.append(spec)
        return f"{spec.image_name}:{tag}"


@pytest.fixture
def swarm():
    return FakeSwarm()


@pytest.fixture
def builder():
    return FakeBuilder()

"""Docker Swarm client wrapper (secret store and stack orchestrator)."""
import json
import logging
import os
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .commands import Deadline, describe_failure, run_command
from .errors import DeployError, SecretAlreadyExistsError, SecretCreateError, SwarmError
from .models import RemoteSecretRecord, Service, Task

logger = logging.getLogger(__name__)


def _json_lines(output: str) -> Iterator[Dict[str, Any]]:
    """Parse `--format '{{json .}}'` output, one object per line."""
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping unparsable docker output line: {line}")
            continue
        if isinstance(item, dict):
            yield item


class SwarmClient:
    """Wrapper around the docker CLI talking to a Swarm manager.

    The target manager is whatever the docker CLI resolves (DOCKER_HOST,
    docker context). Every call is bounded by the shared run deadline.
    """

    def __init__(self, deadline: Optional[Deadline] = None, docker_bin: str = "docker"):
        self.deadline = deadline or Deadline()
        self.docker_bin = docker_bin

    def _docker(self, *args: str, **kwargs):
        return run_command([self.docker_bin, *args], deadline=self.deadline, **kwargs)

    # --- secret store ---

    def list_secrets(self, scope: str) -> List[RemoteSecretRecord]:
        """List secrets whose name starts with `<scope>_`."""
        result = self._docker("secret", "ls", "--format", "{{json .}}")
        if result.returncode != 0:
            raise SwarmError(f"list secrets: {describe_failure(result)}")

        records = []
        for item in _json_lines(result.stdout):
            name = item.get("Name", "")
            if name.startswith(scope + "_"):
                records.append(RemoteSecretRecord(id=item.get("ID", ""), name=name))
        logger.debug(f"Found {len(records)} secret(s) in scope '{scope}'")
        return records

    def secret_exists(self, name: str) -> bool:
        result = self._docker("secret", "inspect", name)
        return result.returncode == 0

    def create_secret(self, name: str, value: str) -> None:
        """
        Create a secret with value as payload (read from stdin, never argv).

        Raises:
            SecretAlreadyExistsError: If another run created the same name first
            SecretCreateError: On any other failure
        """
        result = self._docker("secret", "create", name, "-", input=value)
        if result.returncode == 0:
            return
        reason = describe_failure(result)
        if "already exists" in reason.lower():
            raise SecretAlreadyExistsError(name)
        raise SecretCreateError(name, reason)

    def delete_secret(self, secret_id: str) -> None:
        result = self._docker("secret", "rm", secret_id)
        if result.returncode != 0:
            raise SwarmError(f"remove secret {secret_id}: {describe_failure(result)}")

    # --- orchestrator ---

    def list_services(self, stack: str) -> List[Service]:
        result = self._docker("stack", "services", stack, "--format", "{{json .}}")
        if result.returncode != 0:
            raise SwarmError(f"list services of stack '{stack}': {describe_failure(result)}")

        services = []
        for item in _json_lines(result.stdout):
            ports = [p.strip() for p in str(item.get("Ports", "")).split(",") if p.strip()]
            services.append(Service(
                id=item.get("ID", ""),
                name=item.get("Name", ""),
                mode=item.get("Mode", ""),
                replicas=item.get("Replicas", ""),
                image=item.get("Image", ""),
                ports=ports,
            ))
        return [s for s in services if s.id]

    def list_running_tasks(self, stack: str) -> List[Task]:
        result = self._docker(
            "stack", "ps", stack,
            "--filter", "desired-state=running",
            "--format", "{{json .}}",
        )
        if result.returncode != 0:
            raise SwarmError(f"list tasks of stack '{stack}': {describe_failure(result)}")

        tasks = []
        for item in _json_lines(result.stdout):
            name = item.get("Name", "")
            tasks.append(Task(
                id=item.get("ID", ""),
                name=name,
                image=item.get("Image", ""),
                desired_state=item.get("DesiredState", ""),
                current_state=item.get("CurrentState", ""),
                # Task names are <service>.<slot> or <service>.<node id>
                service_name=name.rsplit(".", 1)[0] if "." in name else name,
            ))
        return tasks

    def inspect_service_secret_refs(self, service_id: str) -> List[str]:
        """Secret ids declared in a service's task template."""
        result = self._docker(
            "service", "inspect",
            "--format", "{{json .Spec.TaskTemplate.ContainerSpec.Secrets}}",
            service_id,
        )
        if result.returncode != 0:
            raise SwarmError(f"inspect service {service_id}: {describe_failure(result)}")

        refs: List[str] = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line or line == "null":
                continue
            try:
                entries = json.loads(line)
            except json.JSONDecodeError as e:
                raise SwarmError(f"parse secrets of service {service_id}: {e}")
            for entry in entries or []:
                secret_id = entry.get("SecretID") if isinstance(entry, dict) else None
                if secret_id:
                    refs.append(secret_id)
        return refs

    def deploy(self, manifest_path: str, stack: str, variables: Mapping[str, str]) -> None:
        """
        Deploy manifest_path as stack, streaming docker output to the terminal.

        Variables are injected into the docker process environment so the CLI
        can substitute ${VAR} references in the manifest.
        """
        env = dict(os.environ)
        env.update(variables)
        result = self._docker(
            "stack", "deploy",
            "--compose-file", str(manifest_path),
            "--with-registry-auth",
            "--prune",
            stack,
            env=env,
            capture=False,
        )
        if result.returncode != 0:
            raise DeployError(f"deploy of stack '{stack}' failed (exit code {result.returncode})")

"""Workflow for reading logical secrets and versioning them into Swarm."""
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from google.api_core import exceptions as gcp_exceptions

from ..domains.commands import Deadline
from ..domains.config_loader import Configuration, gcp_project_for
from ..domains.errors import ConfigError, SecretAlreadyExistsError, SecretSourceError
from ..domains.gcp_client import GCPSecretClient
from ..domains.models import LogicalSecret

logger = logging.getLogger(__name__)

SECRET_ENV_PREFIX = "ROLLWAVE_SECRET_"
HASH_LENGTH = 8


@dataclass
class SecretSyncResult:
    """Outcome of one ensure run.

    mapping is identical for live and dry runs; created/existing are only
    filled by live runs, planned only by dry runs.
    """
    mapping: Dict[str, str] = field(default_factory=dict)
    created: List[str] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)
    planned: List[str] = field(default_factory=list)


def read_env_secrets(environ: Mapping[str, str], prefix: str = SECRET_ENV_PREFIX) -> List[LogicalSecret]:
    """
    Collect logical secrets from a mapping of environment variables.

    Every variable named `<prefix><KEY>` becomes LogicalSecret(KEY, value);
    key case is preserved. Results are sorted by key.
    """
    secrets = []
    for name, value in environ.items():
        if not name.startswith(prefix):
            continue
        key = name[len(prefix):]
        if not key:
            logger.warning(f"Ignoring variable {name}: no secret key after prefix")
            continue
        secrets.append(LogicalSecret(key=key, value=value))
    return sorted(secrets, key=lambda s: s.key)


def read_gcp_secrets(
    keys: Iterable[str],
    project_id: Optional[str],
    client: Optional[GCPSecretClient] = None,
    deadline: Optional[Deadline] = None,
) -> List[LogicalSecret]:
    """
    Fetch the latest version of each named secret from GCP Secret Manager.

    Each request is bounded by what is left of the run deadline when it starts.

    Raises:
        SecretSourceError: If no project is configured, a secret is missing or the API fails
    """
    if not project_id:
        raise SecretSourceError(
            "GCP project ID not found. Set GCP_PROJECT or secrets.gcp_project in rollwave.yml"
        )

    client = client or GCPSecretClient()
    secrets = []
    for key in sorted(set(keys)):
        try:
            timeout = deadline.remaining() if deadline else None
            value = client.fetch_secret(key, project_id, timeout=timeout)
        except gcp_exceptions.GoogleAPIError as e:
            raise SecretSourceError(f"GCP fetch failed for {key}: {e}")
        if value is None:
            raise SecretSourceError(f"Secret '{key}' not found in GCP project {project_id}")
        secrets.append(LogicalSecret(key=key, value=value))

    logger.info(f"Fetched {len(secrets)} secret(s) from GCP project {project_id}")
    return secrets


def load_secrets(
    config: Configuration,
    environ: Mapping[str, str],
    gcp_client: Optional[GCPSecretClient] = None,
    deadline: Optional[Deadline] = None,
) -> List[LogicalSecret]:
    """Read logical secrets from the source selected by the configuration."""
    if config.secret_source == "gcp":
        if not config.secrets.keys:
            logger.warning("secrets.source is 'gcp' but secrets.keys is empty")
            return []
        return read_gcp_secrets(config.secrets.keys, gcp_project_for(config, environ), gcp_client, deadline)
    return read_env_secrets(environ)


def content_hash(value: str) -> str:
    """First HASH_LENGTH hex characters of the SHA-256 of value."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def physical_secret_name(stack: str, prefix: str, key: str, value: str) -> str:
    """Versioned Swarm name: `stack[_prefix]_key_hash8`."""
    parts = [stack]
    if prefix:
        parts.append(prefix)
    parts.extend([key, content_hash(value)])
    return "_".join(parts)


def ensure_secrets(
    secrets: Iterable[LogicalSecret],
    stack: str,
    prefix: str,
    store,
    dry_run: bool = False,
) -> SecretSyncResult:
    """
    Make sure a Swarm secret exists for the current value of every logical secret.

    Names are content-addressed, so an existing object with the derived name
    already holds this value and is left alone. Remote values are never read.

    Args:
        secrets: Logical secrets to version
        stack: Stack name (first component of every physical name)
        prefix: Optional extra scope (second component when set)
        store: Remote secret store exposing secret_exists() and create_secret()
        dry_run: Derive names and report intent without touching the store

    Returns:
        SecretSyncResult whose mapping is logical key -> physical name

    Raises:
        ConfigError: If stack is empty
        SecretCreateError: If creating a secret fails (aborts the run)
    """
    if not stack:
        raise ConfigError("stack name is required (provide via --stack or rollwave.yml)")

    result = SecretSyncResult()
    for secret in sorted(secrets, key=lambda s: s.key):
        name = physical_secret_name(stack, prefix, secret.key, secret.value)
        result.mapping[secret.key] = name

        if dry_run:
            logger.info(f"[dry-run] ensure secret {name}")
            result.planned.append(name)
            continue

        if store.secret_exists(name):
            logger.debug(f"Secret {name} already exists, skipping")
            result.existing.append(name)
            continue

        try:
            store.create_secret(name, secret.value)
        except SecretAlreadyExistsError:
            # created concurrently by another run from the same content
            logger.info(f"Secret {name} was created concurrently, treating as current")
            result.existing.append(name)
            continue

        logger.info(f"Created new secret version: {name}")
        result.created.append(name)

    return result

"""Workflow for removing secret versions no stack service references."""
import logging
from dataclasses import dataclass, field
from typing import List, Set

from ..domains.errors import CommandError, ConfigError, PruneError, SwarmError
from ..domains.models import RemoteSecretRecord

logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    deleted: List[RemoteSecretRecord] = field(default_factory=list)
    failed: List[RemoteSecretRecord] = field(default_factory=list)
    kept: List[RemoteSecretRecord] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


def used_secret_ids(stack: str, client) -> Set[str]:
    """Ids of every secret referenced by the specs of the stack's services."""
    used: Set[str] = set()
    services = client.list_services(stack)
    if not services:
        logger.info(f"No services running in stack '{stack}'")
        return used

    for service in services:
        used.update(client.inspect_service_secret_refs(service.id))
    return used


def prune_secrets(stack: str, client) -> PruneResult:
    """
    Delete secrets named `<stack>_*` that no service of the stack references.

    Secrets outside that naming scope are never considered. Per-secret
    delete failures are logged and skipped; the rest of the batch continues.

    Known limitation: a deploy running concurrently may reference a secret
    between the listing and its deletion.

    Args:
        stack: Stack name
        client: Swarm client exposing list_secrets(), list_services(),
            inspect_service_secret_refs() and delete_secret()

    Returns:
        PruneResult with deleted, failed and kept secrets

    Raises:
        PruneError: If secrets or services cannot be enumerated
    """
    if not stack:
        raise ConfigError("stack name required in config")

    logger.info(f"Pruning secrets for stack '{stack}'")

    try:
        scoped = client.list_secrets(stack)
        used = used_secret_ids(stack, client)
    except (SwarmError, CommandError) as e:
        raise PruneError(f"prune of stack '{stack}' aborted: {e}")

    result = PruneResult()
    for secret in sorted(scoped, key=lambda s: s.name):
        if secret.id in used:
            result.kept.append(secret)
            continue

        logger.info(f"Deleting unused secret: {secret.name}")
        try:
            client.delete_secret(secret.id)
        except SwarmError as e:
            logger.warning(f"Failed to remove {secret.name}: {e}")
            result.failed.append(secret)
            continue
        result.deleted.append(secret)

    logger.info(f"Deleted {result.deleted_count} secret(s), kept {len(result.kept)}")
    return result

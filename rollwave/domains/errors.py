"""Error kinds raised across rollwave.

Every fatal error derives from RollwaveError so the CLI can report it
with a single handler.
"""


class RollwaveError(Exception):
    """Base class for rollwave errors."""
    pass


class ConfigError(RollwaveError):
    """Configuration error (missing file, invalid YAML, unknown environment)."""
    pass


class ManifestParseError(RollwaveError):
    """Malformed manifest or invalid build declaration."""
    pass


class BuildError(RollwaveError):
    """Image build, push or registry login failed."""
    pass


class SecretSourceError(RollwaveError):
    """A logical secret could not be read from its source."""
    pass


class SecretCreateError(RollwaveError):
    """Remote secret creation failed."""

    def __init__(self, physical_name: str, reason: str):
        super().__init__(f"failed to create secret {physical_name}: {reason}")
        self.physical_name = physical_name


class SecretAlreadyExistsError(RollwaveError):
    """The store reported a name collision on create."""

    def __init__(self, physical_name: str):
        super().__init__(f"secret {physical_name} already exists")
        self.physical_name = physical_name


class DeployError(RollwaveError):
    """The orchestrator rejected the deploy or could not be queried."""
    pass


class PruneError(RollwaveError):
    """Secrets or services could not be enumerated for pruning."""
    pass


class CommandError(RollwaveError):
    """An external command could not be started or ran past the deadline."""
    pass


class SwarmError(RollwaveError):
    """A docker swarm query or mutation failed."""
    pass

"""Configuration loader for rollwave."""
import copy
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "rollwave.yml"
DEFAULT_COMPOSE_FILE = "docker-compose.yml"
SECRET_SOURCES = ("env", "gcp")
_NULL_TAG = "tag:yaml.org,2002:null"

STARTER_CONFIG = """\
version: v1
project: my-new-project

stack:
  name: my-stack
  compose_file: docker-compose.yml

secrets:
  # Extra scope so secrets of different environments never clash
  stack_prefix: prod
  # env: read ROLLWAVE_SECRET_* variables; gcp: read secrets.keys from Secret Manager
  source: env

deploy:
  # Sync ROLLWAVE_SECRET_* variables to Swarm before every deploy
  with_secrets: true
  # Remove secret versions no service references after a successful deploy
  prune: false

variables: {}

environments:
  staging:
    stack:
      name: my-stack-staging
    secrets:
      stack_prefix: staging
    deploy:
      prune: true
"""


@dataclass
class StackConfig:
    name: str = ""
    compose_file: str = ""


@dataclass
class SecretsConfig:
    stack_prefix: str = ""
    source: str = ""
    gcp_project: str = ""
    keys: List[str] = field(default_factory=list)


@dataclass
class DeployConfig:
    # None means "inherit" inside an environment overlay
    with_secrets: Optional[bool] = None
    prune: Optional[bool] = None


@dataclass
class Configuration:
    """Resolved rollwave configuration (or an environment overlay of one)."""
    project: str = ""
    stack: StackConfig = field(default_factory=StackConfig)
    secrets: SecretsConfig = field(default_factory=SecretsConfig)
    deploy: DeployConfig = field(default_factory=DeployConfig)
    variables: Dict[str, str] = field(default_factory=dict)
    environments: Dict[str, "Configuration"] = field(default_factory=dict)

    @property
    def compose_file(self) -> str:
        return self.stack.compose_file or DEFAULT_COMPOSE_FILE

    @property
    def secret_source(self) -> str:
        return self.secrets.source or "env"

    @property
    def with_secrets(self) -> bool:
        return bool(self.deploy.with_secrets)

    @property
    def prune(self) -> bool:
        return bool(self.deploy.prune)


def _section(data: Dict[str, Any], key: str, where: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{where}{key}' must be a mapping, got {type(value).__name__}")
    return value


def _string(section: Dict[str, Any], key: str, where: str) -> str:
    value = section.get(key)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ConfigError(f"'{where}{key}' must be a string")
    return str(value)


def _tristate(section: Dict[str, Any], key: str, where: str) -> Optional[bool]:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ConfigError(f"'{where}{key}' must be true or false, got {value!r}")
    return value


def _child(node: Optional[yaml.Node], key: str) -> Optional[yaml.Node]:
    if isinstance(node, yaml.MappingNode):
        for key_node, value_node in node.value:
            if isinstance(key_node, yaml.ScalarNode) and key_node.value == key:
                return value_node
    return None


def _variables_as_written(node: Optional[yaml.Node]) -> Dict[str, str]:
    """
    Values of a `variables` mapping node, taken from the scalar text in the file.

    Docker receives them unchanged: `true` stays `true`, `0.10` stays `0.10`.
    """
    variables: Dict[str, str] = {}
    if not isinstance(node, yaml.MappingNode):
        return variables
    for key_node, value_node in node.value:
        if isinstance(value_node, yaml.ScalarNode):
            variables[str(key_node.value)] = "" if value_node.tag == _NULL_TAG else value_node.value
    return variables


def _parse_config(data: Dict[str, Any], node: Optional[yaml.Node], where: str = "") -> Configuration:
    stack = _section(data, "stack", where)
    secrets = _section(data, "secrets", where)
    deploy = _section(data, "deploy", where)
    variables = _section(data, "variables", where)

    keys = secrets.get("keys") or []
    if not isinstance(keys, list) or not all(isinstance(k, str) and k for k in keys):
        raise ConfigError(f"'{where}secrets.keys' must be a list of secret names")

    source = _string(secrets, "source", where + "secrets.")
    if source and source not in SECRET_SOURCES:
        raise ConfigError(
            f"Unsupported secret source: {source}\n"
            f"Supported sources: {', '.join(SECRET_SOURCES)}"
        )

    for name, value in variables.items():
        if isinstance(value, (dict, list)):
            raise ConfigError(f"Variable '{name}' must be a scalar value")

    return Configuration(
        project=_string(data, "project", where),
        stack=StackConfig(
            name=_string(stack, "name", where + "stack."),
            compose_file=_string(stack, "compose_file", where + "stack."),
        ),
        secrets=SecretsConfig(
            stack_prefix=_string(secrets, "stack_prefix", where + "secrets."),
            source=source,
            gcp_project=_string(secrets, "gcp_project", where + "secrets."),
            keys=list(keys),
        ),
        deploy=DeployConfig(
            with_secrets=_tristate(deploy, "with_secrets", where + "deploy."),
            prune=_tristate(deploy, "prune", where + "deploy."),
        ),
        variables=_variables_as_written(_child(node, "variables")),
    )


def load_config(path: Optional[str] = None) -> Configuration:
    """
    Load and validate configuration from YAML file.

    Args:
        path: Path to rollwave.yml (defaults to ./rollwave.yml)

    Returns:
        Base Configuration, environment overlays still attached

    Raises:
        ConfigError: If the file is missing, unreadable, not valid YAML or malformed
    """
    config_path = Path(path or DEFAULT_CONFIG_PATH)

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found at: {config_path}\n"
            "Create one with:\n"
            "   rollwave init\n"
            "or point to an existing file with --config <path>"
        )

    try:
        text = config_path.read_text()
        data = yaml.safe_load(text)
        root = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}")

    if not data:
        raise ConfigError(f"Config file at {config_path} is empty")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file at {config_path} must contain a YAML mapping")

    config = _parse_config(data, root)

    environments = _section(data, "environments", "")
    environments_node = _child(root, "environments")
    for env_name, overlay in environments.items():
        if overlay is None:
            overlay = {}
        if not isinstance(overlay, dict):
            raise ConfigError(f"Environment '{env_name}' must be a mapping")
        if "environments" in overlay:
            logger.warning(f"Ignoring nested 'environments' inside environment '{env_name}'")
        config.environments[str(env_name)] = _parse_config(
            overlay, _child(environments_node, str(env_name)), f"environments.{env_name}."
        )

    logger.info(f"Configuration loaded successfully from {config_path}")
    logger.debug(f"Stack: {config.stack.name or '<unset>'}, environments: {sorted(config.environments)}")

    return config


def merge_with_env(config: Configuration, env_name: Optional[str]) -> Configuration:
    """
    Apply a named environment overlay to the base configuration.

    Present overlay fields replace the base; empty strings, empty lists and
    unset booleans inherit it. Variables are merged per key with the overlay
    winning. The result never carries the environments table.

    Raises:
        ConfigError: If env_name has no overlay entry
    """
    if not env_name:
        return replace(copy.deepcopy(config), environments={})

    if env_name not in config.environments:
        available = ", ".join(sorted(config.environments)) or "none defined"
        raise ConfigError(f"Unknown environment '{env_name}' (available: {available})")

    base = config
    overlay = config.environments[env_name]

    def pick(new, old):
        return new if new else old

    def pick_bool(new, old):
        return old if new is None else new

    merged = Configuration(
        project=pick(overlay.project, base.project),
        stack=StackConfig(
            name=pick(overlay.stack.name, base.stack.name),
            compose_file=pick(overlay.stack.compose_file, base.stack.compose_file),
        ),
        secrets=SecretsConfig(
            stack_prefix=pick(overlay.secrets.stack_prefix, base.secrets.stack_prefix),
            source=pick(overlay.secrets.source, base.secrets.source),
            gcp_project=pick(overlay.secrets.gcp_project, base.secrets.gcp_project),
            keys=list(pick(overlay.secrets.keys, base.secrets.keys)),
        ),
        deploy=DeployConfig(
            with_secrets=pick_bool(overlay.deploy.with_secrets, base.deploy.with_secrets),
            prune=pick_bool(overlay.deploy.prune, base.deploy.prune),
        ),
        variables={**base.variables, **overlay.variables},
    )

    logger.info(f"Applied environment overlay '{env_name}'")
    return merged


def resolve_config(path: Optional[str] = None, env_name: Optional[str] = None) -> Configuration:
    """Load the config file and flatten it for one environment."""
    return merge_with_env(load_config(path), env_name)


def write_starter_config(path: Optional[str] = None) -> Path:
    """Write a starter rollwave.yml, refusing to overwrite an existing file."""
    config_path = Path(path or DEFAULT_CONFIG_PATH)
    if config_path.exists():
        raise ConfigError(f"{config_path} already exists")

    config_path.write_text(STARTER_CONFIG)
    logger.info(f"Starter configuration written to {config_path}")
    return config_path


def gcp_project_for(config: Configuration, environ: Optional[Dict[str, str]] = None) -> Optional[str]:
    """
    Get GCP project ID for the Secret Manager source.

    Priority order:
    1. GCP_PROJECT environment variable (allows override)
    2. secrets.gcp_project from the resolved config
    """
    environ = os.environ if environ is None else environ
    gcp_project_env = environ.get("GCP_PROJECT")
    if gcp_project_env:
        logger.debug(f"Using GCP_PROJECT from environment: {gcp_project_env}")
        return gcp_project_env
    return config.secrets.gcp_project or None

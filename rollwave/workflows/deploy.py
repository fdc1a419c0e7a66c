"""Deploy workflow: build, version secrets, rewrite the manifest and deploy the stack.

Steps run strictly in order, each gated on the previous one:
- build-spec extraction from the compose file
- registry login (whenever services declare builds, so Swarm can pull)
- optional build and push, one service at a time
- image substitution
- optional secret ensure and rewrite
- generated manifest written next to the original, deployed, then removed
- optional prune of unused secret versions
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

from ..domains.builder import ImageBuilder, git_tag
from ..domains.commands import Deadline
from ..domains.config_loader import Configuration
from ..domains.errors import BuildError, ConfigError, RollwaveError
from ..domains.gcp_client import GCPSecretClient
from ..domains.manifest import (
    Manifest,
    dump_manifest,
    extract_build_specs,
    load_manifest,
    replace_images,
    rewrite_secrets,
)
from .prune import PruneResult, prune_secrets
from .secret_operations import SECRET_ENV_PREFIX, SecretSyncResult, ensure_secrets, load_secrets

logger = logging.getLogger(__name__)

GENERATED_MANIFEST_NAME = "docker-compose.rollwave.generated.yml"


@dataclass
class DeployResult:
    stack: str
    images: Dict[str, str] = field(default_factory=dict)
    secrets: Optional[SecretSyncResult] = None
    prune: Optional[PruneResult] = None
    prune_error: Optional[str] = None


def build_images(manifest: Manifest, builder: ImageBuilder, base_dir: Path, tag: str) -> Dict[str, str]:
    """
    Build and push every service with a build section.

    Returns:
        Service name -> pushed image reference

    Raises:
        BuildError: Naming the failing service; images pushed earlier stay published
    """
    images: Dict[str, str] = {}
    specs = extract_build_specs(manifest)
    if not specs:
        logger.warning("--build used, but no services have a 'build' section")

    for spec in specs:
        try:
            images[spec.service_name] = builder.build_and_push(spec, tag, base_dir)
        except BuildError as e:
            raise BuildError(f"build service {spec.service_name}: {e}")
        logger.info(f"Service '{spec.service_name}' built & pushed: {images[spec.service_name]}")
    return images


def generated_manifest_path(source_path: Path) -> Path:
    return source_path.parent / GENERATED_MANIFEST_NAME


def write_generated_manifest(manifest: Manifest, generated: Path) -> None:
    generated.write_text(dump_manifest(manifest))
    logger.debug(f"Generated manifest written to {generated}")


def deploy_stack(
    config: Configuration,
    environ: Mapping[str, str],
    client,
    builder: ImageBuilder,
    build: bool = False,
    with_secrets: Optional[bool] = None,
    gcp_client: Optional[GCPSecretClient] = None,
    deadline: Optional[Deadline] = None,
) -> DeployResult:
    """
    Deploy the configured stack.

    Args:
        config: Resolved configuration
        environ: Environment the secret source and registry credentials are read from
        client: Swarm client (secret store and orchestrator)
        builder: Image builder
        build: Build and push images before deploying
        with_secrets: Force secret sync on/off; None follows deploy.with_secrets
        gcp_client: Client for the gcp secret source
        deadline: Run deadline bounding git and GCP calls

    Returns:
        DeployResult describing images, secrets and prune outcome

    Raises:
        RollwaveError: Any fatal error; the generated manifest is removed regardless
    """
    stack = config.stack.name
    if not stack:
        raise ConfigError("stack name is required in rollwave.yml (stack.name)")

    result = DeployResult(stack=stack)
    manifest_path = Path(config.compose_file)
    manifest = load_manifest(manifest_path)
    base_dir = manifest_path.parent

    specs = extract_build_specs(manifest)
    if specs:
        builder.login_from_env(specs[0].image_name, environ)

    if build:
        tag = git_tag(cwd=base_dir.resolve(), deadline=deadline)
        result.images = build_images(manifest, builder, base_dir, tag)
        manifest = replace_images(manifest, result.images)

    sync_secrets = config.with_secrets if with_secrets is None else with_secrets
    if sync_secrets:
        logger.info("Ensuring secrets")
        secrets = load_secrets(config, environ, gcp_client, deadline=deadline)
        if not secrets:
            logger.warning(f"No secrets found (source: {config.secret_source}, env prefix {SECRET_ENV_PREFIX})")
        result.secrets = ensure_secrets(secrets, stack, config.secrets.stack_prefix, client)
        manifest = rewrite_secrets(manifest, result.secrets.mapping)

    generated = generated_manifest_path(manifest_path)
    try:
        write_generated_manifest(manifest, generated)
        for name, value in sorted(config.variables.items()):
            logger.info(f"Exporting var: {name}={value}")
        logger.info(f"Deploying stack '{stack}'")
        client.deploy(str(generated), stack, config.variables)
    finally:
        generated.unlink(missing_ok=True)

    logger.info(f"Stack '{stack}' deployed")

    if config.prune:
        try:
            result.prune = prune_secrets(stack, client)
        except RollwaveError as e:
            # the deploy itself succeeded; prune is best effort here
            logger.warning(f"Auto-prune failed: {e}")
            result.prune_error = str(e)

    return result

"""Typed compose manifest model and the rewrite transforms applied before deploy.

Only the keys rollwave acts on are modeled (service `image`/`build`, top-level
secret `name`/`external`); everything else rides along in `extra` bags and is
written back unchanged.
"""
import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from .errors import ConfigError, ManifestParseError
from .models import BuildSpec

logger = logging.getLogger(__name__)

DEFAULT_BUILD_CONTEXT = "."
DEFAULT_DOCKERFILE = "Dockerfile"

# Keys that tell the orchestrator how to create a secret itself
_SECRET_SOURCE_KEYS = ("file", "environment")


@dataclass
class ServiceDefinition:
    image: Optional[Any] = None
    build: Optional[Union[str, Dict[str, Any]]] = None
    # `build:` may be present with a null value
    has_build: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, body: Any) -> "ServiceDefinition":
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise ManifestParseError(f"service '{name}' must be a mapping, got {type(body).__name__}")
        extra = {k: v for k, v in body.items() if k not in ("image", "build")}
        build = body.get("build")
        if build is not None and not isinstance(build, (str, dict)):
            raise ManifestParseError(f"service '{name}' has a build section that is neither a path nor a mapping")
        return cls(image=body.get("image"), build=build, has_build="build" in body, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.image is not None:
            out["image"] = self.image
        if self.has_build:
            out["build"] = self.build
        out.update(self.extra)
        return out


@dataclass
class SecretDefinition:
    name: Optional[str] = None
    external: Optional[Any] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, body: Any) -> "SecretDefinition":
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise ManifestParseError(f"secret '{name}' must be a mapping, got {type(body).__name__}")
        extra = {k: v for k, v in body.items() if k not in ("name", "external")}
        return cls(name=body.get("name"), external=body.get("external"), extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.name is not None:
            out["name"] = self.name
        if self.external is not None:
            out["external"] = self.external
        out.update(self.extra)
        return out


@dataclass
class Manifest:
    """Compose document. `services` / `secrets` are None when the section is absent."""
    services: Optional[Dict[str, ServiceDefinition]] = None
    secrets: Optional[Dict[str, SecretDefinition]] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    key_order: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        sections: Dict[str, Any] = dict(self.extra)
        if self.services is not None:
            sections["services"] = {n: s.to_dict() for n, s in self.services.items()}
        if self.secrets is not None:
            sections["secrets"] = {n: s.to_dict() for n, s in self.secrets.items()}

        out = {k: sections[k] for k in self.key_order if k in sections}
        out.update({k: v for k, v in sections.items() if k not in out})
        return out


def manifest_from_dict(data: Mapping[str, Any]) -> Manifest:
    if not isinstance(data, Mapping):
        raise ManifestParseError("manifest must be a YAML mapping")

    services = data.get("services")
    if services is not None and not isinstance(services, Mapping):
        raise ManifestParseError("'services' must be a mapping of service name to definition")
    secrets = data.get("secrets")
    if secrets is not None and not isinstance(secrets, Mapping):
        raise ManifestParseError("'secrets' must be a mapping of secret name to definition")

    return Manifest(
        services=None if services is None else {
            str(n): ServiceDefinition.from_dict(str(n), b) for n, b in services.items()
        },
        secrets=None if secrets is None else {
            str(n): SecretDefinition.from_dict(str(n), b) for n, b in secrets.items()
        },
        extra={k: v for k, v in data.items() if k not in ("services", "secrets")},
        key_order=[str(k) for k in data],
    )


def parse_manifest(text: str, source: str = "<manifest>") -> Manifest:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestParseError(f"Failed to parse compose file {source}: {e}")
    if data is None:
        raise ManifestParseError(f"Compose file {source} is empty")
    return manifest_from_dict(data)


def load_manifest(path: Union[str, Path]) -> Manifest:
    manifest_path = Path(path)
    try:
        text = manifest_path.read_text()
    except FileNotFoundError:
        raise ConfigError(f"Compose file not found: {manifest_path} (set stack.compose_file in rollwave.yml)")
    except OSError as e:
        raise ConfigError(f"Failed to read compose file {manifest_path}: {e}")
    return parse_manifest(text, source=str(manifest_path))


def dump_manifest(manifest: Manifest) -> str:
    return yaml.safe_dump(manifest.to_dict(), sort_keys=False, default_flow_style=False)


def extract_build_specs(manifest: Manifest) -> List[BuildSpec]:
    """
    Collect the build declaration of every service that has one.

    Raises:
        ManifestParseError: If a service builds without an image name (nothing to push to)
    """
    specs: List[BuildSpec] = []
    for name, service in sorted((manifest.services or {}).items()):
        if not service.has_build:
            continue

        image = service.image
        if not isinstance(image, str) or not image.strip():
            raise ManifestParseError(
                f"service '{name}' has build section but missing 'image' name (required for push)"
            )

        context, dockerfile = DEFAULT_BUILD_CONTEXT, DEFAULT_DOCKERFILE
        if isinstance(service.build, str):
            context = service.build or DEFAULT_BUILD_CONTEXT
        elif isinstance(service.build, dict):
            if isinstance(service.build.get("context"), str) and service.build["context"]:
                context = service.build["context"]
            if isinstance(service.build.get("dockerfile"), str) and service.build["dockerfile"]:
                dockerfile = service.build["dockerfile"]

        specs.append(BuildSpec(service_name=name, image_name=image, context=context, dockerfile=dockerfile))

    return specs


def replace_images(manifest: Manifest, new_images: Mapping[str, str]) -> Manifest:
    """Point services at pushed tags and drop their build sections.

    Swarm cannot build images, so a deployable manifest carries only
    resolved image references. Unknown service names are ignored.
    """
    result = copy.deepcopy(manifest)
    for name, tag in new_images.items():
        service = (result.services or {}).get(name)
        if service is None:
            logger.warning(f"Built image for unknown service '{name}' ignored")
            continue
        service.image = tag
        service.build = None
        service.has_build = False
    return result


def rewrite_secrets(manifest: Manifest, secret_map: Mapping[str, str]) -> Manifest:
    """Point declared secrets at their versioned, externally managed objects."""
    result = copy.deepcopy(manifest)
    if result.secrets is None:
        return result

    for logical_name, physical_name in secret_map.items():
        secret = result.secrets.get(logical_name)
        if secret is None:
            continue
        secret.name = physical_name
        secret.external = True
        for key in _SECRET_SOURCE_KEYS:
            secret.extra.pop(key, None)
        logger.debug(f"Secret '{logical_name}' -> {physical_name}")

    return result

"""Domain models for secret versioning, builds and cluster state."""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class LogicalSecret:
    """A secret as declared locally, before external naming."""
    key: str
    value: str

    def __repr__(self) -> str:
        return f"LogicalSecret(key={self.key!r}, value=<{len(self.value)} chars>)"


@dataclass(frozen=True)
class BuildSpec:
    """Build declaration of one manifest service."""
    service_name: str
    image_name: str
    context: str = "."
    dockerfile: str = "Dockerfile"


@dataclass(frozen=True)
class RemoteSecretRecord:
    """Secret object as reported by the remote store (never its value)."""
    id: str
    name: str


@dataclass
class Service:
    """Service running in a stack."""
    id: str
    name: str
    mode: str = ""
    replicas: str = ""
    image: str = ""
    ports: List[str] = field(default_factory=list)


@dataclass
class Task:
    """A task (container slot) of a stack service."""
    id: str
    name: str
    image: str = ""
    desired_state: str = ""
    current_state: str = ""
    service_name: Optional[str] = None

"""Image build, push and registry login through the docker CLI."""
import logging
import time
from pathlib import Path
from typing import Mapping, Optional

from .commands import Deadline, describe_failure, run_command
from .errors import BuildError, CommandError
from .models import BuildSpec

logger = logging.getLogger(__name__)

REGISTRY_USER_VAR = "ROLLWAVE_REGISTRY_USER"
REGISTRY_PASSWORD_VAR = "ROLLWAVE_REGISTRY_PASSWORD"


def extract_registry(image: str) -> str:
    """Registry host of an image reference, or "" for Docker Hub."""
    domain = image.split("/", 1)[0] if "/" in image else ""
    if "." in domain or ":" in domain or domain == "localhost":
        return domain
    return ""


def strip_tag(image: str) -> str:
    """Drop an existing tag or digest so a fresh tag can be appended."""
    image = image.split("@", 1)[0]
    head, sep, last = image.rpartition("/")
    if ":" in last:
        last = last.split(":", 1)[0]
    return f"{head}{sep}{last}"


def git_tag(cwd: Optional[Path] = None, deadline: Optional[Deadline] = None) -> str:
    """Short git hash of HEAD, or a unix-time tag outside a repository."""
    try:
        result = run_command(["git", "rev-parse", "--short", "HEAD"], deadline=deadline, cwd=cwd)
    except CommandError as e:
        logger.debug(f"git unavailable, falling back to timestamp tag: {e}")
        result = None
    if result is not None and result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip()
    return f"v{int(time.time())}"


class ImageBuilder:
    """Builds and pushes service images with the docker CLI."""

    def __init__(self, deadline: Optional[Deadline] = None, docker_bin: str = "docker"):
        self.deadline = deadline or Deadline()
        self.docker_bin = docker_bin

    def login(self, registry: str, user: str, password: str) -> None:
        target = registry or "Docker Hub"
        logger.info(f"Authenticating to {target} as user '{user}'")

        args = [self.docker_bin, "login", "-u", user, "--password-stdin"]
        if registry:
            args.append(registry)

        result = run_command(args, deadline=self.deadline, input=password)
        if result.returncode != 0:
            raise BuildError(f"docker login to {target} failed: {describe_failure(result)}")

    def login_from_env(self, image: str, environ: Mapping[str, str]) -> bool:
        """Log in to the registry of image when credentials are provided.

        Returns:
            True if a login was performed
        """
        user = environ.get(REGISTRY_USER_VAR, "")
        password = environ.get(REGISTRY_PASSWORD_VAR, "")
        if not user or not password:
            return False
        self.login(extract_registry(image), user, password)
        return True

    def build(self, image_tags, context: Path, dockerfile: Path) -> None:
        args = [self.docker_bin, "build"]
        for ref in image_tags:
            args.extend(["-t", ref])
        args.extend(["-f", str(dockerfile), str(context)])

        result = run_command(args, deadline=self.deadline, capture=False)
        if result.returncode != 0:
            raise BuildError(f"docker build failed for {image_tags[0]} (exit code {result.returncode})")

    def push(self, reference: str) -> None:
        logger.info(f"Pushing image {reference}")
        result = run_command([self.docker_bin, "push", reference], deadline=self.deadline, capture=False)
        if result.returncode != 0:
            raise BuildError(f"docker push failed for {reference} (exit code {result.returncode})")

    def build_and_push(self, spec: BuildSpec, tag: str, base_dir: Path) -> str:
        """
        Build spec's image as `<image>:<tag>` and `<image>:latest`, then push both.

        Args:
            spec: Service build declaration
            tag: Version tag for this run
            base_dir: Directory the manifest lives in; contexts resolve against it

        Returns:
            The pushed versioned reference
        """
        repository = strip_tag(spec.image_name)
        full_image = f"{repository}:{tag}"
        latest_image = f"{repository}:latest"

        context = (base_dir / spec.context).resolve()
        dockerfile = Path(spec.dockerfile)
        if not dockerfile.is_absolute():
            dockerfile = context / dockerfile

        logger.info(f"Building image {full_image} (context={context}, dockerfile={dockerfile})")
        self.build([full_image, latest_image], context, dockerfile)
        self.push(full_image)
        # latest lets a later deploy run without --build
        self.push(latest_image)
        return full_image

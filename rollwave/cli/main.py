"""CLI entrypoint for rollwave."""
import sys
import argparse
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from .validators import validate_name, validate_timeout

VERSION = "0.1.0"

# Configure logging to stderr
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


def _configure_verbosity(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.getLogger().setLevel(level)


def _resolve(args):
    """Load the config file and apply the --env overlay."""
    from rollwave.domains.config_loader import resolve_config

    cfg = resolve_config(args.config, args.env)
    if args.env:
        print(f"Using environment: {args.env}")
    return cfg


def _require_stack(cfg) -> str:
    stack = cfg.stack.name
    if not stack:
        print("Error: stack name is missing in configuration (stack.name)", file=sys.stderr)
        sys.exit(1)
    validate_name(stack, "stack name")
    return stack


def cmd_version(args):
    """Show version information."""
    print(f"rollwave {VERSION}")


def cmd_init(args):
    """Write a starter rollwave.yml."""
    from rollwave.domains.config_loader import write_starter_config

    path = write_starter_config(args.config)
    print(f"Created {path}")
    print("Next steps:")
    print(f"   1. Edit {path} to match your project and stack name.")
    print("   2. Ensure your docker-compose.yml has 'image' and 'build' sections.")
    print("   3. Run 'rollwave deploy --build'")


def cmd_deploy(args):
    """Build, version secrets and deploy the stack."""
    from rollwave.domains.builder import ImageBuilder
    from rollwave.domains.commands import Deadline
    from rollwave.domains.swarm_client import SwarmClient
    from rollwave.workflows.deploy import deploy_stack

    cfg = _resolve(args)
    stack = _require_stack(cfg)
    if cfg.secrets.stack_prefix:
        validate_name(cfg.secrets.stack_prefix, "prefix")

    deadline = Deadline(args.timeout)
    print(f"Deploying stack '{stack}'...")
    result = deploy_stack(
        cfg,
        dict(os.environ),
        SwarmClient(deadline),
        ImageBuilder(deadline),
        build=args.build,
        with_secrets=args.with_secrets,
        deadline=deadline,
    )

    for service, image in sorted(result.images.items()):
        print(f"Service '{service}' built & pushed: {image}")
    if result.secrets is not None:
        for name in result.secrets.created:
            print(f"Created new secret version: {name}")
        if not result.secrets.mapping:
            print("WARNING: No secrets found to sync", file=sys.stderr)
    print("Deployment successful.")

    if result.prune is not None:
        _print_prune_summary(result.prune)
    elif result.prune_error:
        print(f"WARNING: Auto-prune failed: {result.prune_error}", file=sys.stderr)


def cmd_secrets_list(args):
    """List logical secrets found in the environment (values masked)."""
    from rollwave.workflows.secret_operations import SECRET_ENV_PREFIX, read_env_secrets

    secrets = read_env_secrets(os.environ)
    if not secrets:
        print(f"No secrets found beginning with {SECRET_ENV_PREFIX}")
        return
    for secret in secrets:
        print(f"{secret.key}=**** (len={len(secret.value)})")


def cmd_secrets_swarm(args):
    """Sync logical secrets into Docker Swarm."""
    from rollwave.domains.commands import Deadline
    from rollwave.domains.config_loader import Configuration, DEFAULT_CONFIG_PATH
    from rollwave.domains.swarm_client import SwarmClient
    from rollwave.workflows.secret_operations import ensure_secrets, load_secrets

    # Config is optional here as long as --stack is given
    cfg = Configuration()
    if args.config or args.env or Path(DEFAULT_CONFIG_PATH).exists():
        cfg = _resolve(args)

    stack = args.stack or cfg.stack.name
    prefix = args.prefix if args.prefix is not None else cfg.secrets.stack_prefix

    if not stack:
        print("Error: stack name is required (provide via --stack or rollwave.yml)", file=sys.stderr)
        sys.exit(2)
    validate_name(stack, "stack name")
    if prefix:
        validate_name(prefix, "prefix")

    deadline = Deadline(args.timeout)
    secrets = load_secrets(cfg, os.environ, deadline=deadline)
    result = ensure_secrets(secrets, stack, prefix, SwarmClient(deadline), dry_run=args.dry_run)

    if not result.mapping:
        print("No secrets found to sync")
        return
    for name in result.planned:
        print(f"[dry-run] ensure secret {name}")
    for name in result.created:
        print(f"Created new secret version: {name}")
    for name in result.existing:
        print(f"Up to date: {name}")


def _print_prune_summary(result):
    for secret in result.deleted:
        print(f"   Deleted unused secret: {secret.name}")
    for secret in result.failed:
        print(f"   WARNING: Failed to remove {secret.name}", file=sys.stderr)
    if result.deleted_count == 0:
        print("No unused secrets found. Clean.")
    else:
        print(f"Deleted {result.deleted_count} secrets.")


def cmd_prune(args):
    """Remove secret versions no service of the stack references."""
    from rollwave.domains.commands import Deadline
    from rollwave.domains.swarm_client import SwarmClient
    from rollwave.workflows.prune import prune_secrets

    cfg = _resolve(args)
    stack = _require_stack(cfg)

    print(f"Pruning secrets for stack '{stack}'...")
    result = prune_secrets(stack, SwarmClient(Deadline(args.timeout)))
    _print_prune_summary(result)


def cmd_status(args):
    """Show deployment status of the stack."""
    from rollwave.domains.commands import Deadline
    from rollwave.domains.swarm_client import SwarmClient
    from rollwave.workflows.status import format_status_table, stack_status

    cfg = _resolve(args)
    stack = _require_stack(cfg)

    print(f"Environment: {args.env or 'production (default)'}")
    print(f"Stack:       {stack}\n")

    rows = stack_status(stack, SwarmClient(Deadline(args.timeout)))
    if not rows:
        print("No services found for this stack.")
        return
    print(format_status_table(rows))


def _add_config_args(parser, env_help):
    parser.add_argument(
        "-c", "--config",
        help="Path to rollwave.yml (default: ./rollwave.yml)"
    )
    parser.add_argument(
        "-e", "--env",
        help=env_help
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Abort external docker/git/GCP calls after this many seconds in total"
    )


def build_parser():
    parser = argparse.ArgumentParser(
        prog="rollwave",
        description="Rollwave - build, version secrets and deploy Docker Swarm stacks from a compose file",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (configuration, build, secret sync, deploy, etc.)
  2 - Usage error (invalid arguments, invalid stack name, etc.)

Environment variables:
  ROLLWAVE_SECRET_<KEY>       - Secret KEY synced to Swarm (source: env)
  ROLLWAVE_REGISTRY_USER      - Registry user for docker login
  ROLLWAVE_REGISTRY_PASSWORD  - Registry password for docker login
  GCP_PROJECT                 - GCP project ID (source: gcp, overrides config)

A .env file in the working directory is loaded first; existing variables win.
        """
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Show progress (-v) or debug output (-vv) on stderr"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # version command
    _version_parser = subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of rollwave"
    )

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Initialize a new rollwave.yml config",
        description="Write a starter rollwave.yml. Refuses to overwrite an existing file."
    )
    init_parser.add_argument(
        "-c", "--config",
        help="Path of the file to create (default: ./rollwave.yml)"
    )

    # deploy command
    deploy_parser = subparsers.add_parser(
        "deploy",
        help="Build from Compose and deploy",
        description="""
Deploy the stack defined by rollwave.yml and its compose file.

Steps:
  1. Registry login (when ROLLWAVE_REGISTRY_* are set and services declare builds)
  2. Build and push images (--build), tagged with the git short hash and latest
  3. Version secrets into Swarm and point the compose file at them
  4. docker stack deploy with config variables exported
  5. Prune unused secret versions (deploy.prune)
        """
    )
    _add_config_args(deploy_parser, "Environment to deploy to (e.g. staging, production)")
    deploy_parser.add_argument(
        "--build",
        action="store_true",
        help="Build services defined in docker-compose.yml"
    )
    secrets_toggle = deploy_parser.add_mutually_exclusive_group()
    secrets_toggle.add_argument(
        "--with-secrets",
        dest="with_secrets",
        action="store_true",
        default=None,
        help="Sync secrets before deploying (overrides deploy.with_secrets)"
    )
    secrets_toggle.add_argument(
        "--no-secrets",
        dest="with_secrets",
        action="store_false",
        help="Skip secret sync (overrides deploy.with_secrets)"
    )

    # secrets command
    secrets_parser = subparsers.add_parser(
        "secrets",
        help="Manage rollwave secrets",
        description="Without a subcommand, list ROLLWAVE_SECRET_* variables (values masked)."
    )
    secrets_subparsers = secrets_parser.add_subparsers(dest="secrets_command")

    _secrets_list_parser = secrets_subparsers.add_parser(
        "list",
        help="List secrets found in the environment",
        description="List ROLLWAVE_SECRET_* variables with masked values"
    )

    swarm_parser = secrets_subparsers.add_parser(
        "swarm",
        help="Sync rollwave secrets into Docker Swarm",
        description="""
Reads ROLLWAVE_SECRET_* from the environment (and .env) and creates
versioned Docker Swarm secrets for a given stack.

Example:
  # Using config (recommended)
  rollwave secrets swarm --env staging

  # Manual override
  rollwave secrets swarm --stack myapp --prefix prod
        """
    )
    _add_config_args(swarm_parser, "Environment to use (e.g. staging)")
    swarm_parser.add_argument(
        "--stack",
        help="Docker Swarm stack name (overrides config)"
    )
    swarm_parser.add_argument(
        "--prefix",
        help="Optional extra prefix for secret names (overrides config)"
    )
    swarm_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be created without applying"
    )

    # prune command
    prune_parser = subparsers.add_parser(
        "prune",
        help="Remove unused secrets for the stack",
        description="Delete <stack>_* secrets that no service of the stack references"
    )
    _add_config_args(prune_parser, "Environment to prune (e.g. staging, production)")

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show deployment status of the stack",
        description="List services of the stack with running/desired replicas, image and ports"
    )
    _add_config_args(status_parser, "Environment to check (e.g. staging)")

    return parser


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (configuration, build, secret sync, deploy, etc.)
        2 - Usage errors (invalid arguments, invalid names, etc.)
    """
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_verbosity(args.verbose)

    # If no command provided, show help and exit with usage error code
    if not args.command:
        parser.print_help()
        sys.exit(2)

    if getattr(args, "timeout", None) is not None:
        validate_timeout(args.timeout)

    # Route to command handlers
    try:
        if args.command == "version":
            cmd_version(args)
        elif args.command == "init":
            cmd_init(args)
        elif args.command == "deploy":
            cmd_deploy(args)
        elif args.command == "secrets":
            if args.secrets_command in (None, "list"):
                cmd_secrets_list(args)
            elif args.secrets_command == "swarm":
                cmd_secrets_swarm(args)
            else:
                parser.print_help()
                sys.exit(2)
        elif args.command == "prune":
            cmd_prune(args)
        elif args.command == "status":
            cmd_status(args)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""Input validation for CLI arguments."""
import re
import sys

# Docker object names: alphanumerics, underscores, hyphens and dots
NAME_PATTERN = r'^[a-zA-Z0-9_.-]+$'


def validate_name(value: str, label: str) -> None:
    """
    Validate a stack name or secret prefix before it becomes part of Swarm object names.

    Args:
        value: Name to validate
        label: What the value is ("stack name", "prefix"), used in messages

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not value:
        print(f"Error: {label} cannot be empty", file=sys.stderr)
        sys.exit(2)

    if not re.match(NAME_PATTERN, value):
        print(f"Error: Invalid {label} '{value}'", file=sys.stderr)
        print("\nAllowed characters: letters, numbers, underscores (_), hyphens (-), dots (.)", file=sys.stderr)
        print("\nExamples of valid names:", file=sys.stderr)
        print("  ✓ myapp", file=sys.stderr)
        print("  ✓ myapp-staging", file=sys.stderr)
        print("\nExamples of invalid names:", file=sys.stderr)
        print("  ✗ my app (contains space)", file=sys.stderr)
        print("  ✗ app/prod (contains /)", file=sys.stderr)
        sys.exit(2)


def validate_timeout(value: float) -> None:
    """Reject non-positive --timeout values (exit code 2)."""
    if value is not None and value <= 0:
        print("Error: --timeout must be a positive number of seconds", file=sys.stderr)
        sys.exit(2)

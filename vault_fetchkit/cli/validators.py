"""Input validation for CLI arguments."""
import re
import sys

# GCP Secret Manager ids: letters, digits, underscores, hyphens, up to 255 chars
SECRET_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{1,255}$')


def validate_secret_name(name: str) -> None:
    """
    Validate secret name matches GCP requirements.

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not name:
        print("Error: Secret name cannot be empty", file=sys.stderr)
        sys.exit(2)

    if not SECRET_NAME_PATTERN.match(name):
        print(f"Error: Invalid secret name '{name}'", file=sys.stderr)
        print("\nAllowed: letters, numbers, underscores (_), hyphens (-), at most 255 characters", file=sys.stderr)
        print("Examples: MY_SECRET, api-key-prod, DATABASE_PASSWORD_123", file=sys.stderr)
        sys.exit(2)


def validate_secret_names(names) -> None:
    """Validate every name, exiting with code 2 on the first invalid one."""
    for name in names:
        validate_secret_name(name)

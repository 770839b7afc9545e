#!/usr/bin/env python3
"""Fetch three database secrets in one batch and construct a PostgreSQL connection string."""

import sys

from vault_fetchkit.secrets.workflows.secret_operations import get_secrets

DB_SECRETS = ["DB_HOST", "DB_USER", "DB_PASS"]


def main():
    """Main function to fetch secrets and construct connection string."""
    values = get_secrets(DB_SECRETS, quiet=True)

    missing = [name for name in DB_SECRETS if not values.get(name)]
    if missing:
        print(f"Error fetching {', '.join(missing)}", file=sys.stderr)
        sys.exit(1)

    connection_string = f"postgresql://{values['DB_USER']}:{values['DB_PASS']}@{values['DB_HOST']}/postgres"
    print(connection_string)


if __name__ == "__main__":
    main()

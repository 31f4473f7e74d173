#!/usr/bin/env python3
"""Issue a bearer token for an administrator.

Usage:
    python scripts/create_admin_token.py --user-id UUID [--name LABEL] [--expires-in-days N] [--grant-admin]

The plain token is printed once; only its bcrypt hash is stored.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from admin_assistant.services.access_token_service import create_access_token, grant_admin_role


def main():
    parser = argparse.ArgumentParser(description="Create an admin access token")
    parser.add_argument("--user-id", required=True, help="User the token authenticates as")
    parser.add_argument("--name", default=None, help="Label shown in token listings")
    parser.add_argument(
        "--expires-in-days",
        type=int,
        default=None,
        help="Days until the token expires (default: never)",
    )
    parser.add_argument(
        "--grant-admin",
        action="store_true",
        help="Also give the user the admin role if it is missing",
    )

    args = parser.parse_args()

    if args.grant_admin:
        grant_admin_role(args.user_id)

    issued = create_access_token(args.user_id, name=args.name, expires_in_days=args.expires_in_days)
    print(f"Token id:   {issued['token_id']}")
    print(f"Expires at: {issued['expires_at'] or 'never'}")
    print(f"Token:      {issued['token']}")
    print("Store this token now; it cannot be shown again.")


if __name__ == "__main__":
    main()

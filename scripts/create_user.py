#!/usr/bin/env python3
"""Create a user account, or toggle the admin flag on an existing one.

Usage:
  python scripts/create_user.py --email pat@example.com --password secret123
  python scripts/create_user.py --email pat@example.com --admin
"""

import argparse
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.golfpoi.models import User  # noqa: E402
from scripts._db_utils import resolve_database_url, script_session  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", help="Required when creating a new account")
    parser.add_argument("--first-name")
    parser.add_argument("--last-name")
    parser.add_argument("--admin", action="store_true", help="Grant the admin flag")
    parser.add_argument("--revoke-admin", action="store_true", help="Clear the admin flag")
    args = parser.parse_args()

    db_url = resolve_database_url()
    email = args.email.strip().lower()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user:
            if not args.password or len(args.password) < 8:
                print("A password of at least 8 characters is required for a new account.")
                sys.exit(2)
            user = User(
                email=email,
                password_hash=generate_password_hash(args.password),
                first_name=args.first_name,
                last_name=args.last_name,
                admin_user=bool(args.admin),
                is_active=True,
            )
            s.add(user)
            print(f"Created {email} (admin={user.admin_user})")
            return
        if args.admin:
            user.admin_user = True
        if args.revoke_admin:
            user.admin_user = False
        print(f"Updated {email} (admin={user.admin_user})")


if __name__ == "__main__":
    main()

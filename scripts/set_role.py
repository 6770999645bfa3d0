#!/usr/bin/env python3
"""Set a user's role (idempotent).

Usage:
  python scripts/set_role.py --email someone@example.com --role admin
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.constants import ROLES
from app.portal.models import User
from scripts._db_utils import resolve_db_url, script_session


def set_role(email: str, role: str, *, database_url: str | None = None) -> bool:
    if role not in ROLES:
        raise ValueError(f"Unknown role {role!r}; expected one of {sorted(ROLES)}")
    with script_session(resolve_db_url(database_url)) as s:
        user = s.query(User).filter(User.email == email.strip().lower()).one_or_none()
        if not user:
            print(f"User not found: {email}")
            return False
        if user.role == role:
            print(f"User already has role {role}: {email}")
            return True
        user.role = role
    print(f"Role {role} set for {email}")
    return True


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--role", required=True, choices=sorted(ROLES))
    args = parser.parse_args()
    if not set_role(args.email, args.role):
        sys.exit(1)


if __name__ == "__main__":
    main()

import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.constants import ROLE_ADMIN
from app.portal.models import User
from scripts._db_utils import resolve_db_url, script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the initial administrator in an idempotent way.
    Does NOT overwrite an existing user's password; only makes sure the role is admin.
    """
    admin_name = (os.environ.get("ADMIN_NAME") or "admin").strip()
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    with script_session(resolve_db_url(database_url)) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                name=admin_name,
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                role=ROLE_ADMIN,
            )
            s.add(user)
        elif user.role != ROLE_ADMIN:
            user.role = ROLE_ADMIN

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()

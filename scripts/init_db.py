import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.edms.models import Permission, Role, User
from scripts._db_utils import script_session

PERMISSIONS = {
    "requests.view": "Requests: view",
    "requests.create": "Requests: create",
    "requests.review": "Requests: review and route",
    "retention.view": "Retention: view disposal schedule",
}

# role key -> (display name, permission keys)
ROLES = {
    "admin": ("Administrator", tuple(PERMISSIONS)),
    "reviewer": ("Reviewer", ("requests.view", "requests.create", "requests.review")),
    "originator": ("Originator", ("requests.view", "requests.create")),
    "records_manager": ("Records Manager", ("requests.view", "retention.view")),
}


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@edms.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    with script_session(database_url) as s:
        perms: dict[str, Permission] = {}
        for key, name in PERMISSIONS.items():
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms[key] = p

        roles: dict[str, Role] = {}
        for key, (name, perm_keys) in ROLES.items():
            role = s.query(Role).filter(Role.key == key).one_or_none()
            if not role:
                role = Role(key=key, name=name)
                s.add(role)
            for pk in perm_keys:
                if perms[pk] not in role.permissions:
                    role.permissions.append(perms[pk])
            roles[key] = role

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                is_active=True,
                display_name="Administrator",
                is_app_admin=True,
            )
            s.add(user)
        if roles["admin"] not in user.roles:
            user.roles.append(roles["admin"])

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()

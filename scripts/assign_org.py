#!/usr/bin/env python3
"""Set a user's place in the chain of command and attach a role (idempotent).

Usage:
  python scripts/assign_org.py --email capt.smith@unit.mil --org-role COMMANDER --unit-uic M12345 --role reviewer
"""

import sys
import argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.edms.models import User, Role
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--role", help="Role key to attach (admin, reviewer, originator, records_manager)")
    parser.add_argument("--org-role", help="Chain-of-command role, e.g. PLATOON_REVIEWER, COMMANDER")
    parser.add_argument("--unit-uic")
    parser.add_argument("--installation-id")
    parser.add_argument("--hqmc-division")
    parser.add_argument("--rank")
    parser.add_argument("--display-name")
    args = parser.parse_args()

    with script_session() as s:
        user = s.query(User).filter(User.email.ilike(args.email)).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            return
        for attr in ("org_role", "unit_uic", "installation_id", "hqmc_division", "rank", "display_name"):
            value = getattr(args, attr)
            if value is not None:
                setattr(user, attr, value.strip() or None)
        if args.role:
            role = s.query(Role).filter(Role.key == args.role).one_or_none()
            if not role:
                print(f"Role not found: {args.role}. Run python scripts/init_db.py first.")
                return
            if role not in (user.roles or []):
                user.roles.append(role)
        print(f"Updated {args.email}: org_role={user.org_role} unit={user.unit_uic} installation={user.installation_id}")


if __name__ == "__main__":
    main()

# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Development helper – stands in for the external sign-in layer.

Creates the user if needed, opens a web session bound to "<user id>-web" and
prints a bearer token for it:

    python bin/seed_user.py u1 alice@example.com

Use the token to approve device codes or call /auth/device/key-material.
"""

import argparse
import os
import sys

# bin/seed_user.py  →  ../  →  project root
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_BACKEND_DIR  = os.path.join(_PROJECT_ROOT, "backend")
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from auth.service import SessionService   # noqa: E402
from database import SessionLocal         # noqa: E402
from models.user import User              # noqa: E402


def seed(user_id: str, email: str, name: str) -> str:
    db = SessionLocal()
    try:
        if db.get(User, user_id) is None:
            db.add(User(id=user_id, email=email, name=name))
            db.commit()
            print(f"[seed_user] User '{user_id}' created.", file=sys.stderr)
        _, token = SessionService(db).open_session(user_id, "web", ip_address="127.0.0.1")
        return token
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("user_id")
    parser.add_argument("email")
    parser.add_argument("--name", default="")
    args = parser.parse_args()
    print(seed(args.user_id, args.email, args.name))

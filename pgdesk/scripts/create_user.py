"""
Create a user (e.g. the first superadmin). Run from project root:
  python -m pgdesk.scripts.create_user EMAIL PASSWORD [role] [--branch BRANCH_ID]
Example:
  python -m pgdesk.scripts.create_user owner@example.com your-secure-password superadmin
"""
import argparse
import logging
import sys
import time

from pgdesk.core.config import get_settings
from pgdesk.core.database import SessionLocal
from pgdesk.core.exceptions import PGDeskError
from pgdesk.core.security import Role
from pgdesk.services.credentials import CredentialStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
# Timestamps are rendered in UTC to match the Z suffix.
logging.Formatter.converter = time.gmtime
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create a PGDesk user (no registration UI).")
    parser.add_argument("email", help="Email address (login name)")
    parser.add_argument("password", help="Password (8-128 chars)")
    parser.add_argument(
        "role",
        nargs="?",
        default=Role.RESIDENT.value,
        choices=[r.value for r in Role],
    )
    parser.add_argument("--branch", dest="branch_id", default=None, help="Branch reference")
    parser.add_argument("--first-name", default=None)
    parser.add_argument("--last-name", default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    db = SessionLocal()
    try:
        store = CredentialStore(db, get_settings())
        user = store.create_user(
            email=args.email,
            password=args.password,
            role=Role(args.role),
            branch_id=args.branch_id,
            first_name=args.first_name,
            last_name=args.last_name,
        )
        print(f"Created user '{user.email}' with role '{user.role}'.")
        return 0
    except PGDeskError as e:
        print(e.message, file=sys.stderr)
        return 1
    except Exception as e:
        logger.exception("User creation failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())

"""
Bootstrap the first admin account.

Credentials come from the command line or from FIRST_ADMIN_EMAIL /
FIRST_ADMIN_PASSWORD. Running it again for an existing email is a no-op.

Usage:
  python -m shopadmin.create_admin --email admin@example.com --password '...'
"""
import argparse
from typing import Optional, Sequence

from . import crud, schemas
from .config import get_settings
from .db import init_db, make_engine, make_session_factory
from .log import configure_logging, logger


def seed(database_url: str, data: schemas.UserRegister) -> bool:
    """Create the admin if missing. Returns True when a row was inserted."""
    engine = make_engine(database_url)
    try:
        init_db(engine)
        db = make_session_factory(engine)()
        try:
            user, created = crud.create_admin(db, data)
        finally:
            db.close()
    finally:
        engine.dispose()

    if created:
        logger.info("admin '%s' created", user.email)
    else:
        logger.info("admin '%s' already exists, skipping", user.email)
    return created


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Create the first admin user")
    parser.add_argument("--db", default=settings.database_url, help="SQLAlchemy database URL")
    parser.add_argument("--name", default=settings.first_admin_name)
    parser.add_argument("--email", default=settings.first_admin_email)
    parser.add_argument("--password", default=settings.first_admin_password)
    parser.add_argument("--phone", default="0000000000")
    parser.add_argument("--zipcode", default="00000")
    args = parser.parse_args(argv)

    configure_logging(settings.log_config)
    if not args.email or not args.password:
        parser.error("an email and password are required (flags or FIRST_ADMIN_EMAIL/FIRST_ADMIN_PASSWORD)")

    data = schemas.validate(
        schemas.UserRegister,
        {
            "name": args.name,
            "email": args.email,
            "phone": args.phone,
            "zipcode": args.zipcode,
            "password": args.password,
        },
    )
    seed(args.db, data)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

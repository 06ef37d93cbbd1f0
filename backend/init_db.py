"""
Database initialization script for authlink.

Creates the users and token tables and optionally seeds a demo account.

Usage:
    python init_db.py --with-seed
"""

import argparse
import logging

from authlink import crud
from authlink.database import Base, get_engine, get_sessionmaker
from authlink.security_core import PasswordHasher

logger = logging.getLogger("init_db")

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "demo-password"


def init_db(with_seed: bool = False) -> None:
    """Create all tables and optionally seed the database."""
    Base.metadata.create_all(bind=get_engine())
    if not with_seed:
        return
    db = get_sessionmaker()()
    try:
        if crud.get_user_by_email(db, DEMO_EMAIL) is None:
            crud.create_user(db, DEMO_EMAIL, PasswordHasher().hash(DEMO_PASSWORD))
            logger.info("Seeded demo user %s", DEMO_EMAIL)
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Initialize the authlink database")
    parser.add_argument("--with-seed", action="store_true", help="Seed a demo user")
    args = parser.parse_args()
    init_db(with_seed=args.with_seed)

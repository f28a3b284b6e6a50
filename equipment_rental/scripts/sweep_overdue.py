#!/usr/bin/env python3
"""Mark reserved and active rentals whose scheduled return has passed as overdue."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from equipment_rental.db.base import Base
from equipment_rental.models import billing_models, inventory_models, rental_models, user_models  # noqa: F401
from equipment_rental.services.rental_service import sweep_overdue


def _parse_now(raw: str) -> datetime:
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO timestamp: {raw!r}") from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the overdue sweep for one tenant or for every tenant.",
    )
    parser.add_argument("--company-id", type=int, default=None, help="Tenant to sweep; omit for all tenants")
    parser.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="Reference time as ISO timestamp; defaults to the current local time.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_ENGINE_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_ENGINE_DB_URL env var.",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before sweeping.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.db_url:
        parser.error("Missing DB URL. Set RENTAL_ENGINE_DB_URL or pass --db-url.")
    if args.company_id is not None and args.company_id <= 0:
        parser.error("--company-id must be > 0")

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    if args.create_schema:
        Base.metadata.create_all(engine)

    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    with session_factory() as db:
        count = sweep_overdue(db, args.company_id, args.now)
        db.commit()

    engine.dispose()
    scope = f"company_id={args.company_id}" if args.company_id is not None else "company_id=all"
    print(f"OK {scope} marked_overdue={count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

from __future__ import annotations

import argparse
import logging
import sys

from recurrence_engine.infra.db import init_db
from recurrence_engine.infra.logging import setup_logging
from recurrence_engine.infra.repository import TaskRepository
from recurrence_engine.services.recurrence_service import RecurrenceService

logger = logging.getLogger("recurrence_engine")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recurrence-engine",
        description="Materialize upcoming instances of recurring task templates.",
    )
    parser.add_argument("--user-id", type=int, help="only generate for this user's templates")
    parser.add_argument("--create-schema", action="store_true", help="create missing tables first")
    parser.add_argument("--log-level", help="override LOG_LEVEL")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        init_db(create_schema=args.create_schema)
    except Exception as exc:  # noqa: BLE001
        logger.error("DB error: %s", exc)
        return 1

    service = RecurrenceService(TaskRepository())
    if args.user_id is not None:
        created = service.generate_for_user(args.user_id)
    else:
        created = service.generate_all()
    logger.info("Created %d recurring instance(s)", len(created))
    return 0


if __name__ == "__main__":
    sys.exit(main())

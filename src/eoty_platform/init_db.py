"""Create the database schema, including the audit-table guards."""

import argparse
import logging

from eoty_platform.db.session import create_tables, drop_tables, engine

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Initialize the EOTY platform database.")
    parser.add_argument("--reset", action="store_true", help="drop every table first")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    url = engine.url.render_as_string(hide_password=True)
    if args.reset:
        drop_tables()
        logger.warning("Dropped all tables on %s", url)
    create_tables()
    logger.info("Schema created on %s", url)


if __name__ == "__main__":
    main()

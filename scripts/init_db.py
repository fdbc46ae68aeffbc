"""Create the PhotoBatch data directories and database tables."""

from __future__ import annotations

import sys

from photobatch.config import load_config
from photobatch.db.db_init import init_db
from photobatch.db.db_session import build_engine


def main() -> int:
    config = load_config()
    config.ensure_directories()
    engine = build_engine(config.resolved_database_url())
    try:
        init_db(engine)
    finally:
        engine.dispose()
    print(f"Database initialized at {config.resolved_database_url()}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

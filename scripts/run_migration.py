#!/usr/bin/env python3
"""
Apply SQL migrations from backend/sql/ (uses DATABASE_URL from .env)

Usage:
    python scripts/run_migration.py                          # every file, in name order
    python scripts/run_migration.py backend/sql/001_mosques.sql
"""
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.services.common.config import get_settings  # noqa: E402
from backend.services.common.database import Database  # noqa: E402
from backend.services.common.logger import get_logger  # noqa: E402

logger = get_logger("migrations")


async def migrate(files: list[Path]) -> None:
    db = Database.from_settings(get_settings())
    try:
        for path in files:
            count = await db.run_script(path.read_text())
            logger.info(f"Applied {path.name} ({count} statements)")
    finally:
        await db.dispose()


def main() -> None:
    settings = get_settings()
    if len(sys.argv) > 1:
        files = [Path(arg) for arg in sys.argv[1:]]
    else:
        files = sorted(settings.sql_dir.glob("*.sql"))

    missing = [str(f) for f in files if not f.exists()]
    if missing:
        logger.error(f"File not found: {', '.join(missing)}")
        sys.exit(1)

    asyncio.run(migrate(files))


if __name__ == "__main__":
    main()

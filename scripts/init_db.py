# scripts/init_db.py
import argparse
import asyncio

from buyermatch.config import settings
from buyermatch.db import create_tables


async def main() -> None:
    parser = argparse.ArgumentParser(description="Create the matching database tables.")
    parser.add_argument("--drop", action="store_true", help="drop every table first (destroys data)")
    args = parser.parse_args()

    tables = await create_tables(drop_first=args.drop)
    print(f"OK: {settings.MATCH_DB_URL} has {len(tables)} tables: {', '.join(tables)}")


if __name__ == "__main__":
    asyncio.run(main())

#!/usr/bin/env python3
"""CLI script to apply the add-if-missing schema upgrade.

Usage:
    uv run python scripts/upgrade_schema.py
    uv run python scripts/upgrade_schema.py --check

Connects directly to the database using DATABASE_URL from environment or .env file.
With --check, only prints the current schema capabilities.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import os
import sys

# Ensure project root is on sys.path so we can import src.pulsecrm
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def run(check_only: bool) -> int:
    from src.pulsecrm.core.capabilities import PostgresSchemaCatalog, SchemaCapabilityProbe
    from src.pulsecrm.core.database import close_db, get_engine
    from src.pulsecrm.core.schema_upgrader import SchemaUpgrader

    engine = get_engine()
    probe = SchemaCapabilityProbe(PostgresSchemaCatalog(engine))
    try:
        if not check_only:
            report = await SchemaUpgrader(engine, probe=probe).run()
            print(f"Applied: {', '.join(report.applied) or 'nothing'}")
            if report.failed:
                print(f"Failed:  {', '.join(report.failed)}")

        caps = await probe.get_schema_caps()
        print("Schema capabilities:")
        for name, value in dataclasses.asdict(caps).items():
            print(f"  {name:<26} {'yes' if value else 'no'}")
        return 0 if check_only or not report.failed else 1
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Upgrade the database schema in place")
    parser.add_argument("--check", action="store_true", help="Only report schema capabilities")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.check)))


if __name__ == "__main__":
    main()

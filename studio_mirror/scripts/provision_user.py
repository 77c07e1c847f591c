#!/usr/bin/env python3
"""Create a mirror user or rotate its Cucumber Studio credentials.

Usage:
  studio-mirror-user --email qa@example.com --client-id CLIENT --access-token TOKEN
  python -m studio_mirror.scripts.provision_user --email qa@example.com \
      --client-id CLIENT --access-token TOKEN --db-path data/mirror.db
"""
from __future__ import annotations

import argparse
import asyncio

from studio_mirror.db import connection, migrations
from studio_mirror.db.sync_engine import SyncEngine
from studio_mirror.services.studio_client import StudioClient


async def _run(email: str, client_id: str, access_token: str, db_path: str | None = None) -> int:
    db = await connection.open_connection(db_path=db_path)
    client = StudioClient()
    try:
        await migrations.run_migrations(db)
        engine = SyncEngine(db, client)
        try:
            user = await engine.register_user(email, client_id, access_token)
        except ValueError as exc:
            print(f"Cannot provision user: {exc}")
            return 1
        print(f"user_id={user.id} email={user.email}")
        return 0
    finally:
        await client.close()
        await connection.close_connection(db)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--email", required=True, help="User email; existing users are updated")
    parser.add_argument("--client-id", required=True, help="Cucumber Studio client id")
    parser.add_argument("--access-token", required=True, help="Cucumber Studio access token")
    parser.add_argument("--db-path", default="", help="SQLite file (default: STUDIO_MIRROR_DB_PATH)")
    args = parser.parse_args(argv)
    return asyncio.run(_run(args.email, args.client_id, args.access_token, args.db_path or None))


if __name__ == "__main__":
    raise SystemExit(main())

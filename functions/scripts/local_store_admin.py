"""
CLI helper to inspect and reset the offline (local store) database.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from local_store.client import OfflineClient, create_offline_client, seed_demo_data
from shared.config import get_settings

logger = logging.getLogger(__name__)


async def list_users(client: OfflineClient) -> int:
    users = await client.service.repos.users.list_all()
    for user in users:
        flags = []
        if user.is_admin:
            flags.append("admin")
        if user.banned:
            flags.append("banned")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"{user.id}\t{user.username}\t{user.email}{suffix}")
    logger.info("%d users", len(users))
    return 0


async def check_username(client: OfflineClient, username: str) -> int:
    """Exit status 0 when the username is free, 1 when it is taken."""
    user = await client.service.repos.users.find_by_username(username)
    if user is None:
        print(f"{username!r} is available")
        return 0
    print(f"{username!r} is taken by {user.id} ({user.email})")
    return 1


async def seed(client: OfflineClient) -> int:
    if await seed_demo_data(client):
        print("Seeded demo users and posts")
    else:
        print("Store already has users; nothing seeded")
    return 0


async def clear(client: OfflineClient) -> int:
    removed = await client.store.clear()
    print(f"Removed {removed} collections")
    return 0


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.path:
        settings = settings.model_copy(update={"local_store_path": args.path})
    client = create_offline_client(settings)
    if args.command == "list-users":
        return await list_users(client)
    if args.command == "check-username":
        return await check_username(client, args.username)
    if args.command == "seed":
        return await seed(client)
    return await clear(client)


def main() -> int:
    parser = argparse.ArgumentParser(description="Offline store admin")
    parser.add_argument(
        "--path",
        type=str,
        default=None,
        help="JSON file backing the store (defaults to LOCAL_STORE_PATH)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("list-users", help="Print every registered user")
    check = subparsers.add_parser(
        "check-username", help="Report whether a username is taken"
    )
    check.add_argument("username", type=str)
    subparsers.add_parser("seed", help="Add demo users and posts to an empty store")
    subparsers.add_parser("clear", help="Delete every collection and the session")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())

"""
Initialize the configured storage backend.

Selects the backend the same way the API does, then:
  - SQL: creates missing tables
  - MongoDB: creates missing collections and indexes
  - in-memory: nothing to do (data does not outlive the process)

With --with-demo-data a few users, services and jobs are added. On MongoDB
they are imported with fixed numeric ids so they stay addressable by number.
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

from workhub.config import get_settings
from workhub.db import DbClient, InMemoryDbClient
from workhub.dependencies import BackendSelector
from workhub.entities import Job, Service, User, utcnow
from workhub.errors import BackendUnavailableError
from workhub.mongo_db import MongoDbClient
from workhub.security import hash_password

logger = logging.getLogger(__name__)

DEMO_USERS = [
    {"username": "demo_freelancer", "full_name": "Demo Freelancer", "role": "freelancer"},
    {"username": "demo_employer", "full_name": "Demo Employer", "role": "employer"},
]

DEMO_SERVICES = [
    {
        "owner": "demo_freelancer",
        "title": "Logo design",
        "description": "A clean vector logo with two rounds of revisions",
        "price": 50,
        "category": "Design",
        "delivery_time": "3 days",
    },
    {
        "owner": "demo_freelancer",
        "title": "Blog post writing",
        "description": "A researched 1000-word article",
        "price": 80,
        "category": "Writing",
        "delivery_time": "5 days",
    },
]

DEMO_JOBS = [
    {
        "owner": "demo_employer",
        "title": "Landing page for a bakery",
        "description": "Responsive single page with a contact form",
        "budget": 600,
        "category": "Web",
        "job_type": "fixed",
        "location": "Remote",
    },
]


def _user_values(entry: dict, password: str) -> dict:
    return {
        "username": entry["username"],
        "email": f"{entry['username']}@example.com",
        "password": hash_password(password),
        "full_name": entry["full_name"],
        "role": entry["role"],
    }


def _owned(entry: dict) -> dict:
    return {k: v for k, v in entry.items() if k != "owner"}


async def import_demo_data(db: MongoDbClient, *, password: str) -> int:
    if await db.get_user_by_username(DEMO_USERS[0]["username"]):
        logger.info("Demo data already present, skipping")
        return 0

    now = utcnow()
    users = [
        User(id=index, created_at=now, **_user_values(entry, password))
        for index, entry in enumerate(DEMO_USERS, start=1)
    ]
    owners = {user.username: user.id for user in users}
    services = [
        Service(id=index, user_id=owners[entry["owner"]], created_at=now, **_owned(entry))
        for index, entry in enumerate(DEMO_SERVICES, start=1)
    ]
    jobs = [
        Job(id=index, user_id=owners[entry["owner"]], created_at=now, **_owned(entry))
        for index, entry in enumerate(DEMO_JOBS, start=1)
    ]

    total = await db.import_records(User, users)
    total += await db.import_records(Service, services)
    total += await db.import_records(Job, jobs)
    return total


async def create_demo_data(db: DbClient, *, password: str) -> int:
    if await db.get_user_by_username(DEMO_USERS[0]["username"]):
        logger.info("Demo data already present, skipping")
        return 0

    owners = {}
    for entry in DEMO_USERS:
        user = await db.create_user(_user_values(entry, password))
        owners[user.username] = user.id
    for entry in DEMO_SERVICES:
        await db.create_service(owners[entry["owner"]], _owned(entry))
    for entry in DEMO_JOBS:
        await db.create_job(owners[entry["owner"]], _owned(entry))
    return len(DEMO_USERS) + len(DEMO_SERVICES) + len(DEMO_JOBS)


async def run(*, with_demo_data: bool, password: str) -> int:
    selector = BackendSelector(get_settings())
    db = await selector.get_client()
    logger.info("Selected storage: %s", selector.kind)

    try:
        if isinstance(db, InMemoryDbClient):
            logger.warning("In-memory storage selected; nothing will persist after exit")
        elif isinstance(db, MongoDbClient):
            created = await db.init_schema()
            logger.info("Created collections: %s", ", ".join(created) or "none")

        if with_demo_data:
            if isinstance(db, MongoDbClient):
                count = await import_demo_data(db, password=password)
            else:
                count = await create_demo_data(db, password=password)
            logger.info("Added %d demo records", count)
    except BackendUnavailableError as exc:
        logger.error("Storage backend unavailable: %s", exc)
        return 1
    finally:
        await selector.close()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Initialize the configured storage backend")
    parser.add_argument(
        "--with-demo-data",
        action="store_true",
        help="Add demo users, services and jobs",
    )
    parser.add_argument(
        "--demo-password",
        default="demo-password",
        help="Password for the demo accounts",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    return asyncio.run(run(with_demo_data=args.with_demo_data, password=args.demo_password))


if __name__ == "__main__":
    raise SystemExit(main())

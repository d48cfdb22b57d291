"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from backend.db import SqlDatabase, create_sql_repositories
from local_store.repository import create_local_repositories
from local_store.store import InMemoryKeyValueStore, LocalStore
from shared.config import get_settings
from shared.constants import REST_FEED_LIMIT
from social.passwords import BcryptPasswordHasher
from social.repository import Repositories
from social.service import SocialService

logger = logging.getLogger(__name__)

_database: SqlDatabase | None = None
_repositories: Repositories | None = None
_social_service: SocialService | None = None


def get_database() -> SqlDatabase | None:
    """
    Return the SQL database singleton, or None when the app runs on the
    in-memory store.
    """
    global _database
    if _database:
        return _database

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        return None
    _database = SqlDatabase(settings.database_url)
    return _database


def get_repositories() -> Repositories:
    global _repositories
    if _repositories:
        return _repositories

    database = get_database()
    if database is None:
        logger.info("No database configured; using the in-memory store")
        _repositories = create_local_repositories(LocalStore(InMemoryKeyValueStore()))
    else:
        _repositories = create_sql_repositories(database)
    return _repositories


def get_social_service() -> SocialService:
    """
    Return a singleton service so state persists across requests.

    The REST deployment hashes passwords with bcrypt and enforces one
    context per post, never from the post's author.
    """
    global _social_service
    if _social_service:
        return _social_service

    settings = get_settings()
    _social_service = SocialService(
        get_repositories(),
        password_hasher=BcryptPasswordHasher(rounds=settings.bcrypt_rounds),
        feed_limit=REST_FEED_LIMIT,
        strict_contexts=True,
        privileged_usernames=settings.privileged_usernames,
    )
    return _social_service


async def init_dependencies() -> None:
    database = get_database()
    if database is not None:
        await database.init_schema()
    get_social_service()


async def shutdown_dependencies() -> None:
    if _database is not None:
        await _database.dispose()


def reset_dependencies() -> None:
    """Drop every singleton; the next request builds fresh ones."""
    global _database, _repositories, _social_service
    _database = None
    _repositories = None
    _social_service = None

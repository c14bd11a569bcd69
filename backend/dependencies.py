"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.assignments import AssignmentStore
from backend.config import get_settings
from backend.db import DbClient, InMemoryDbClient, SqlAlchemyDbClient, UserRecord
from backend.identity import GoogleIdentityResolver, IdentityResolver, resolve_user

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_db_client: DbClient | None = None
_identity_resolver: IdentityResolver | None = None


def get_db_client() -> DbClient:
    """
    Return the process-wide DB client, opening it on first use.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory database backend")
        _db_client = InMemoryDbClient()
    else:
        _db_client = SqlAlchemyDbClient(settings.database_url)
    return _db_client


def close_db_client() -> None:
    """Release the DB client so the next get_db_client() opens a fresh one."""
    global _db_client
    if _db_client is None:
        return
    _db_client.close()
    _db_client = None


def get_identity_resolver() -> IdentityResolver:
    global _identity_resolver
    if _identity_resolver:
        return _identity_resolver

    settings = get_settings()
    _identity_resolver = GoogleIdentityResolver(settings.google_client_id)
    return _identity_resolver


def get_assignment_store(db: DbClient = Depends(get_db_client)) -> AssignmentStore:
    return AssignmentStore(db)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    db: DbClient = Depends(get_db_client),
) -> UserRecord:
    """
    Resolve the bearer token and upsert its user before any route runs.
    """
    token = credentials.credentials if credentials else None
    return resolve_user(resolver, db, token)

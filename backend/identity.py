"""
Identity resolution: turn a bearer credential into a stored user.

Verification is delegated to Google's ID token check; the resolver is an
injected dependency so the rest of the app can be exercised without network.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

import cachecontrol
import requests
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from sqlalchemy.exc import SQLAlchemyError

from backend.db import DbClient, UserRecord, utcnow
from backend.errors import NotFound, PersistenceFailure, Unauthenticated

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None


class IdentityResolver(Protocol):
    """Resolves an opaque bearer token or raises Unauthenticated."""

    def resolve(self, token: str) -> Identity:
        ...


class GoogleIdentityResolver:
    """Verifies Google Sign-In ID tokens issued for ``client_id``."""

    def __init__(self, client_id: Optional[str]):
        self.client_id = client_id
        # Google's signing certs are served with Cache-Control; honour it so
        # they are fetched once per max-age rather than on every request.
        self._request = google_requests.Request(
            session=cachecontrol.CacheControl(requests.Session())
        )

    def resolve(self, token: str) -> Identity:
        if not self.client_id:
            logger.warning("Token verification skipped: GOOGLE_CLIENT_ID is not set")
            raise Unauthenticated("Invalid token")
        try:
            claims = id_token.verify_oauth2_token(
                token, self._request, audience=self.client_id
            )
        except (ValueError, google_auth_exceptions.GoogleAuthError) as exc:
            logger.warning("Token verification failed: %s", exc)
            raise Unauthenticated("Invalid token") from exc

        subject = claims.get("sub")
        email = claims.get("email")
        if not subject or not email:
            logger.warning("Token verification failed: missing sub or email claim")
            raise Unauthenticated("Invalid token")
        return Identity(
            id=str(subject),
            email=email,
            name=claims.get("name"),
            picture=claims.get("picture"),
        )


def upsert_user(
    db: DbClient, identity: Identity, now: Optional[datetime] = None
) -> UserRecord:
    """Create the user on first sight, otherwise refresh profile and last seen."""
    now = now or utcnow()
    record = UserRecord(
        id=identity.id,
        email=identity.email,
        name=identity.name,
        picture=identity.picture,
        created_at=now,
        updated_at=now,
    )
    try:
        return db.upsert_user(record)
    except SQLAlchemyError as exc:
        logger.exception("Error upserting user %s", identity.id)
        raise PersistenceFailure("Failed to load user") from exc


def resolve_user(
    resolver: IdentityResolver,
    db: DbClient,
    token: Optional[str],
    clock: Callable[[], datetime] = utcnow,
) -> UserRecord:
    """
    Resolve ``token`` and make sure the user row exists before returning it.
    """
    if not token:
        raise Unauthenticated("No token provided")
    identity = resolver.resolve(token)
    return upsert_user(db, identity, clock())


def load_user(db: DbClient, user_id: str) -> UserRecord:
    """Read the stored profile for ``user_id``."""
    try:
        user = db.get_user(user_id)
    except SQLAlchemyError as exc:
        logger.exception("Error loading user %s", user_id)
        raise PersistenceFailure("Failed to load user") from exc
    if user is None:
        raise NotFound("User not found")
    return user

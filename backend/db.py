"""
Database abstraction for SQLAlchemy-backed stores and an in-memory test implementation.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    select,
)
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


class DuplicateAssignmentError(Exception):
    """The user already has an assignment with this id."""

    def __init__(self, user_id: str, assignment_id: str):
        self.user_id = user_id
        self.assignment_id = assignment_id
        super().__init__(f"Assignment {assignment_id} already exists for user {user_id}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DbClient(Protocol):
    """Interface for database access."""

    def upsert_user(self, user: "UserRecord") -> "UserRecord":
        ...

    def get_user(self, user_id: str) -> Optional["UserRecord"]:
        ...

    def list_assignments(self, user_id: str) -> list["AssignmentRecord"]:
        ...

    def get_assignment(
        self, user_id: str, assignment_id: str
    ) -> Optional["AssignmentRecord"]:
        ...

    def insert_assignment(self, record: "AssignmentRecord") -> "AssignmentRecord":
        ...

    def save_assignment(
        self, record: "AssignmentRecord"
    ) -> Optional["AssignmentRecord"]:
        ...

    def delete_assignment(self, user_id: str, assignment_id: str) -> bool:
        ...

    def replace_assignments(
        self, user_id: str, records: list["AssignmentRecord"]
    ) -> list["AssignmentRecord"]:
        ...

    def close(self) -> None:
        ...


@dataclass
class UserRecord:
    id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "picture": self.picture,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class AssignmentRecord:
    id: str
    user_id: str
    title: str
    subject: str
    type: str
    due_date: str
    description: Optional[str] = None
    completed: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        """External shape; the owning user id is never exposed."""
        return {
            "id": self.id,
            "title": self.title,
            "subject": self.subject,
            "type": self.type,
            "dueDate": self.due_date,
            "description": self.description,
            "completed": bool(self.completed),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def _sorted_by_due_date(records: list[AssignmentRecord]) -> list[AssignmentRecord]:
    # sorted() is stable, so equal due dates keep insertion order.
    return sorted(records, key=lambda record: record.due_date)


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.assignments: Dict[str, list[AssignmentRecord]] = {}
        self._lock = threading.Lock()

    def upsert_user(self, user: UserRecord) -> UserRecord:
        with self._lock:
            existing = self.users.get(user.id)
            if existing:
                user = replace(user, created_at=existing.created_at)
            self.users[user.id] = user
            return replace(user)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def list_assignments(self, user_id: str) -> list[AssignmentRecord]:
        with self._lock:
            items = self.assignments.get(user_id, [])
            return [replace(item) for item in _sorted_by_due_date(items)]

    def get_assignment(
        self, user_id: str, assignment_id: str
    ) -> Optional[AssignmentRecord]:
        with self._lock:
            for item in self.assignments.get(user_id, []):
                if item.id == assignment_id:
                    return replace(item)
            return None

    def insert_assignment(self, record: AssignmentRecord) -> AssignmentRecord:
        with self._lock:
            items = self.assignments.setdefault(record.user_id, [])
            if any(item.id == record.id for item in items):
                raise DuplicateAssignmentError(record.user_id, record.id)
            items.append(replace(record))
            return replace(record)

    def save_assignment(
        self, record: AssignmentRecord
    ) -> Optional[AssignmentRecord]:
        with self._lock:
            items = self.assignments.get(record.user_id, [])
            for index, item in enumerate(items):
                if item.id == record.id:
                    items[index] = replace(record, created_at=item.created_at)
                    return replace(items[index])
            return None

    def delete_assignment(self, user_id: str, assignment_id: str) -> bool:
        with self._lock:
            items = self.assignments.get(user_id, [])
            remaining = [item for item in items if item.id != assignment_id]
            if len(remaining) == len(items):
                return False
            self.assignments[user_id] = remaining
            return True

    def replace_assignments(
        self, user_id: str, records: list[AssignmentRecord]
    ) -> list[AssignmentRecord]:
        fresh = [replace(record, user_id=user_id) for record in records]
        with self._lock:
            # Swapping the whole list keeps readers from seeing a partial set.
            self.assignments[user_id] = fresh
            return [replace(item) for item in _sorted_by_due_date(fresh)]

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.assignments.clear()

    def close(self) -> None:
        self.reset()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SqlAlchemyDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres, or SQLite for local runs and tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlAlchemyDbClient")
        url = make_url(database_url)
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        is_sqlite = url.get_backend_name() == "sqlite"
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise each thread gets an empty database.
                # Readers then share an open sync transaction and can see its
                # intermediate state; use a file or server URL outside tests.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_user_record(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            email=row.email,
            name=row.name,
            picture=row.picture,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _to_assignment_record(self, row: "AssignmentRow") -> AssignmentRecord:
        return AssignmentRecord(
            id=row.id,
            user_id=row.user_id,
            title=row.title,
            subject=row.subject,
            type=row.type,
            due_date=row.due_date,
            description=row.description,
            completed=row.completed == 1,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _to_assignment_row(self, record: AssignmentRecord) -> "AssignmentRow":
        return AssignmentRow(
            id=record.id,
            user_id=record.user_id,
            title=record.title,
            subject=record.subject,
            type=record.type,
            due_date=record.due_date,
            description=record.description,
            completed=1 if record.completed else 0,
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
        )

    def _list_stmt(self, user_id: str):
        return (
            select(AssignmentRow)
            .where(AssignmentRow.user_id == user_id)
            .order_by(AssignmentRow.due_date.asc(), AssignmentRow.pk.asc())
        )

    def _scoped_row(
        self, session: Session, user_id: str, assignment_id: str
    ) -> Optional["AssignmentRow"]:
        stmt = select(AssignmentRow).where(
            AssignmentRow.user_id == user_id,
            AssignmentRow.id == assignment_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    def upsert_user(self, user: UserRecord) -> UserRecord:
        values = {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "picture": user.picture,
            "created_at": as_utc(user.created_at),
            "updated_at": as_utc(user.updated_at),
        }
        dialect = self.engine.dialect.name
        with self.Session.begin() as session:
            if dialect in ("sqlite", "postgresql"):
                insert = sqlite_insert if dialect == "sqlite" else postgresql_insert
                stmt = insert(UserRow).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[UserRow.id],
                    set_={
                        "email": stmt.excluded.email,
                        "name": stmt.excluded.name,
                        "picture": stmt.excluded.picture,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                session.execute(stmt)
            else:
                row = session.get(UserRow, user.id)
                if row:
                    row.email = user.email
                    row.name = user.name
                    row.picture = user.picture
                    row.updated_at = values["updated_at"]
                else:
                    session.add(UserRow(**values))
                session.flush()
            row = session.execute(
                select(UserRow).where(UserRow.id == user.id)
            ).scalar_one()
            return self._to_user_record(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user_record(row) if row else None

    def list_assignments(self, user_id: str) -> list[AssignmentRecord]:
        with self.Session() as session:
            rows = session.execute(self._list_stmt(user_id)).scalars().all()
            return [self._to_assignment_record(row) for row in rows]

    def get_assignment(
        self, user_id: str, assignment_id: str
    ) -> Optional[AssignmentRecord]:
        with self.Session() as session:
            row = self._scoped_row(session, user_id, assignment_id)
            return self._to_assignment_record(row) if row else None

    def insert_assignment(self, record: AssignmentRecord) -> AssignmentRecord:
        with self.Session() as session:
            row = self._to_assignment_row(record)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if self._scoped_row(session, record.user_id, record.id):
                    raise DuplicateAssignmentError(record.user_id, record.id) from exc
                raise
            session.refresh(row)
            return self._to_assignment_record(row)

    def save_assignment(
        self, record: AssignmentRecord
    ) -> Optional[AssignmentRecord]:
        with self.Session() as session:
            row = self._scoped_row(session, record.user_id, record.id)
            if not row:
                return None
            row.title = record.title
            row.subject = record.subject
            row.type = record.type
            row.due_date = record.due_date
            row.description = record.description
            row.completed = 1 if record.completed else 0
            row.updated_at = as_utc(record.updated_at)
            session.commit()
            session.refresh(row)
            return self._to_assignment_record(row)

    def delete_assignment(self, user_id: str, assignment_id: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                delete(AssignmentRow).where(
                    AssignmentRow.user_id == user_id,
                    AssignmentRow.id == assignment_id,
                )
            )
            session.commit()
            return (result.rowcount or 0) > 0

    def replace_assignments(
        self, user_id: str, records: list[AssignmentRecord]
    ) -> list[AssignmentRecord]:
        # Delete and re-insert commit together or not at all.
        with self.Session.begin() as session:
            session.execute(
                delete(AssignmentRow).where(AssignmentRow.user_id == user_id)
            )
            session.add_all(
                [
                    self._to_assignment_row(replace(record, user_id=user_id))
                    for record in records
                ]
            )
            session.flush()
            rows = session.execute(self._list_stmt(user_id)).scalars().all()
            return [self._to_assignment_record(row) for row in rows]

    def close(self) -> None:
        self.engine.dispose()


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=True)
    picture = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class AssignmentRow(Base):
    __tablename__ = "assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "id", name="uq_assignment_user_id"),
    )

    # Surrogate key; also records insertion order for due date ties.
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    type = Column(String, nullable=False)
    due_date = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    completed = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

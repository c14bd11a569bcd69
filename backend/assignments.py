"""
Assignment store: the per-user collection of homework assignments.

Every operation is scoped to the resolved user id. A row owned by another
user is reported exactly like a missing row.

``sync_assignments`` is a full replace, not a merge: rows absent from the
payload are deleted. Two concurrent syncs from the same user race and the
last transaction to commit decides the final state.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Iterator, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from backend.db import (
    AssignmentRecord,
    DbClient,
    DuplicateAssignmentError,
    as_utc,
    utcnow,
)
from backend.errors import NotFound, PersistenceFailure, ValidationError
from backend.schemas import AssignmentPayload, AssignmentSyncItem, AssignmentUpdate

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def generate_assignment_id() -> str:
    return uuid.uuid4().hex


def parse_payload(
    model: Type[ModelT], payload: Any, location: Optional[str] = None
) -> ModelT:
    """
    Validate ``payload`` against ``model`` and report the first offending field.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError(
            "Assignment payload must be an object", field=location or "body"
        )
    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        field_name = ".".join(str(part) for part in error["loc"])
        field = f"{location}.{field_name}" if location else field_name
        if error["type"] in ("missing", "string_too_short"):
            message = f"Missing required field: {field_name}"
        else:
            message = f"Invalid value for {field_name}: {error['msg']}"
        raise ValidationError(message, field=field) from exc


@contextmanager
def _persistence_guard(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Error trying to %s", action)
        raise PersistenceFailure(f"Failed to {action}") from exc


class AssignmentStore:
    """CRUD plus bulk replace over one user's assignments."""

    def __init__(
        self,
        db: DbClient,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = generate_assignment_id,
    ):
        self.db = db
        self.clock = clock
        self.id_factory = id_factory

    def list_assignments(self, user_id: str) -> list[AssignmentRecord]:
        with _persistence_guard("fetch assignments"):
            return self.db.list_assignments(user_id)

    def create_assignment(
        self, user_id: str, payload: Mapping[str, Any]
    ) -> AssignmentRecord:
        data = parse_payload(AssignmentPayload, payload)
        now = self.clock()
        record = AssignmentRecord(
            id=data.id or self.id_factory(),
            user_id=user_id,
            title=data.title,
            subject=data.subject,
            type=data.type,
            due_date=data.dueDate,
            description=data.description,
            completed=data.completed,
            created_at=now,
            updated_at=now,
        )
        try:
            with _persistence_guard("create assignment"):
                return self.db.insert_assignment(record)
        except DuplicateAssignmentError as exc:
            raise ValidationError(
                f"Assignment {record.id} already exists", field="id"
            ) from exc

    def update_assignment(
        self, user_id: str, assignment_id: str, payload: Mapping[str, Any]
    ) -> AssignmentRecord:
        data = parse_payload(AssignmentUpdate, payload)
        changes = data.model_dump(exclude_unset=True)
        with _persistence_guard("update assignment"):
            existing = self.db.get_assignment(user_id, assignment_id)
            if not existing:
                raise NotFound("Assignment not found")
            merged = replace(
                existing,
                # Null or empty required fields keep their previous value.
                title=changes.get("title") or existing.title,
                subject=changes.get("subject") or existing.subject,
                type=changes.get("type") or existing.type,
                due_date=changes.get("dueDate") or existing.due_date,
                description=changes.get("description", existing.description),
                completed=changes.get("completed", existing.completed),
                updated_at=self.clock(),
            )
            saved = self.db.save_assignment(merged)
        if saved is None:
            # Deleted between the read and the write.
            raise NotFound("Assignment not found")
        return saved

    def delete_assignment(self, user_id: str, assignment_id: str) -> None:
        with _persistence_guard("delete assignment"):
            deleted = self.db.delete_assignment(user_id, assignment_id)
        if not deleted:
            raise NotFound("Assignment not found")

    def sync_assignments(self, user_id: str, items: Any) -> list[AssignmentRecord]:
        """
        Replace the user's whole assignment set with ``items``.

        Items are validated before anything is written, so a malformed item
        leaves the stored set untouched. When an id repeats inside one payload
        the last occurrence wins and keeps that occurrence's position.
        """
        if not isinstance(items, list):
            raise ValidationError("Assignments must be an array", field="assignments")
        parsed = [
            parse_payload(AssignmentSyncItem, item, location=f"assignments[{index}]")
            for index, item in enumerate(items)
        ]
        now = self.clock()
        records: dict[str, AssignmentRecord] = {}
        for data in parsed:
            record = AssignmentRecord(
                id=data.id or self.id_factory(),
                user_id=user_id,
                title=data.title,
                subject=data.subject,
                type=data.type,
                due_date=data.dueDate,
                description=data.description,
                completed=bool(data.completed),
                created_at=as_utc(data.createdAt) if data.createdAt else now,
                updated_at=now,
            )
            records.pop(record.id, None)
            records[record.id] = record
        with _persistence_guard("sync assignments"):
            result = self.db.replace_assignments(user_id, list(records.values()))
        logger.info(
            "Synced %d assignments for user %s (%d items received)",
            len(result),
            user_id,
            len(items),
        )
        return result

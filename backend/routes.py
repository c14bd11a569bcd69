"""
HTTP routes for the homework backend API.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends

from backend.assignments import AssignmentStore
from backend.db import DbClient, UserRecord
from backend.dependencies import get_assignment_store, get_current_user, get_db_client
from backend.identity import load_user
from backend.schemas import (
    AssignmentResponse,
    DeleteResponse,
    HealthResponse,
    UserResponse,
)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", timestamp=datetime.now(timezone.utc))


@router.get("/me", response_model=UserResponse)
def me(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return load_user(db, user.id).as_dict()


@router.get("/assignments", response_model=list[AssignmentResponse])
def list_assignments(
    user: UserRecord = Depends(get_current_user),
    store: AssignmentStore = Depends(get_assignment_store),
):
    return [record.as_dict() for record in store.list_assignments(user.id)]


@router.post("/assignments", response_model=AssignmentResponse, status_code=201)
def create_assignment(
    payload: Any = Body(default=None),
    user: UserRecord = Depends(get_current_user),
    store: AssignmentStore = Depends(get_assignment_store),
):
    record = store.create_assignment(user.id, payload)
    return record.as_dict()


@router.post("/assignments/sync", response_model=list[AssignmentResponse])
def sync_assignments(
    payload: Any = Body(default=None),
    user: UserRecord = Depends(get_current_user),
    store: AssignmentStore = Depends(get_assignment_store),
):
    """
    Replace every assignment of the caller with ``payload["assignments"]``.
    """
    items = payload.get("assignments") if isinstance(payload, dict) else None
    records = store.sync_assignments(user.id, items)
    return [record.as_dict() for record in records]


@router.put("/assignments/{assignment_id}", response_model=AssignmentResponse)
def update_assignment(
    assignment_id: str,
    payload: Any = Body(default=None),
    user: UserRecord = Depends(get_current_user),
    store: AssignmentStore = Depends(get_assignment_store),
):
    # No body is an empty partial update.
    record = store.update_assignment(
        user.id, assignment_id, payload if payload is not None else {}
    )
    return record.as_dict()


@router.delete("/assignments/{assignment_id}", response_model=DeleteResponse)
def delete_assignment(
    assignment_id: str,
    user: UserRecord = Depends(get_current_user),
    store: AssignmentStore = Depends(get_assignment_store),
):
    store.delete_assignment(user.id, assignment_id)
    return DeleteResponse(success=True)

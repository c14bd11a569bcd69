"""
Pydantic schemas for the homework backend.

Field names follow the JSON contract shared with the frontend (camelCase).
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AssignmentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[str] = Field(default=None, max_length=128)
    title: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    dueDate: str = Field(..., min_length=1)
    description: Optional[str] = None
    completed: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _blank_id_is_missing(cls, value):
        return None if value == "" else value

    @field_validator("completed", mode="before")
    @classmethod
    def _null_completed_is_false(cls, value):
        return False if value is None else value


class AssignmentSyncItem(AssignmentPayload):
    createdAt: Optional[datetime] = None

    @field_validator("createdAt", mode="before")
    @classmethod
    def _blank_created_at_is_missing(cls, value):
        return None if value == "" else value


class AssignmentUpdate(BaseModel):
    """Partial update: only the keys the client sent are applied."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    title: Optional[str] = None
    subject: Optional[str] = None
    type: Optional[str] = None
    dueDate: Optional[str] = None
    description: Optional[str] = None
    completed: Optional[bool] = None

    @field_validator("completed", mode="before")
    @classmethod
    def _null_completed_is_false(cls, value):
        return False if value is None else value


class AssignmentResponse(BaseModel):
    id: str
    title: str
    subject: str
    type: str
    dueDate: str
    description: Optional[str] = None
    completed: bool
    createdAt: datetime
    updatedAt: datetime


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime


class DeleteResponse(BaseModel):
    success: Literal[True]


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: datetime

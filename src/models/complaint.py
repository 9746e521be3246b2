"""Complaint and reply models for CampusDesk.

Store documents use camelCase field names (``assignedDept``,
``resolvedAt`` ...); the models expose snake_case attributes and map
between the two through field aliases, so ``Complaint.from_document``
and ``Complaint.to_document`` are the only places that know the stored
shape.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from config.departments import UNASSIGNED
from src.models.enums import PRIORITY_LEVELS, Category, ComplaintStatus, Priority


class Complaint(BaseModel):
    """A complaint document as stored in the ``complaints`` collection."""

    model_config = ConfigDict(populate_by_name=True)

    complaint_id: str = Field(default="", alias="id")
    title: str
    description: str = ""
    category: Category = Category.OTHER
    priority: Priority = Priority.LOW
    priority_level: int = Field(default=3, alias="priorityLevel", ge=1, le=3)
    assigned_dept: str = Field(default=UNASSIGNED, alias="assignedDept")
    status: ComplaintStatus = ComplaintStatus.PENDING
    is_escalated: bool = Field(default=False, alias="isEscalated")
    is_anonymous: bool = Field(default=False, alias="isAnonymous")
    rating: int | None = Field(default=None, ge=1, le=5)
    rating_comment: str = Field(default="", alias="ratingComment")
    attachment_url: str = Field(default="", alias="attachmentURL")
    internal_note: str = Field(default="", alias="internalNote")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    resolved_at: datetime | None = Field(default=None, alias="resolvedAt")

    # Ownership (denormalised creator identity)
    user_id: str = Field(alias="userId")
    user_name: str = Field(default="", alias="userName")
    user_email: str = Field(default="", alias="userEmail")
    user_roll_no: str = Field(default="", alias="userRollNo")

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> Any:
        if value is None:
            return Category.OTHER
        try:
            return Category(value)
        except ValueError:
            return Category.OTHER

    @field_validator("assigned_dept", mode="before")
    @classmethod
    def _coerce_department(cls, value: Any) -> Any:
        return value or UNASSIGNED

    @model_validator(mode="after")
    def _sync_priority_level(self) -> Complaint:
        self.priority_level = PRIORITY_LEVELS[self.priority]
        return self

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> Complaint:
        return cls.model_validate({**data, "id": doc_id})

    def to_document(self) -> dict[str, Any]:
        """Serialise to the stored camelCase shape (id excluded)."""
        return self.model_dump(by_alias=True, exclude={"complaint_id"})


class Reply(BaseModel):
    """A single message in a complaint's reply thread."""

    model_config = ConfigDict(populate_by_name=True)

    reply_id: str = Field(default="", alias="id")
    text: str
    author: str
    author_id: str = Field(alias="authorId")
    timestamp: datetime | None = None

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> Reply:
        return cls.model_validate({**data, "id": doc_id})


class TriageTurn(BaseModel):
    """One turn of the pre-submission AI triage conversation."""

    role: str = Field(..., pattern="^(user|assistant)$")
    text: str = Field(..., max_length=5000)


class ComplaintSubmission(BaseModel):
    """Everything a student provides when filing a complaint."""

    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=5, max_length=5000)
    user_name: str = Field(..., min_length=1, max_length=200)
    user_roll_no: str = Field(..., min_length=1, max_length=50)
    is_anonymous: bool = False
    attachment_url: str = Field(default="", max_length=2000)
    triage_log: list[TriageTurn] = Field(default_factory=list)

    def full_description(self) -> str:
        """Initial issue text followed by the triage transcript, if any."""
        if not self.triage_log:
            return self.description
        transcript = "\n".join(f"{turn.role}: {turn.text}" for turn in self.triage_log)
        return f"Initial Issue: {self.description}\n\n--- AI Triage Log ---\n{transcript}"


class ComplaintOwner(BaseModel):
    """Creator identity, present in a view only when the reader may see it."""

    user_name: str
    user_email: str
    user_roll_no: str


class ComplaintView(BaseModel):
    """Read model handed to callers.

    ``owner`` is ``None`` for anonymous complaints read by anyone other
    than their creator; ``internal_note`` is only filled for staff.
    """

    complaint_id: str
    title: str
    description: str
    category: Category
    priority: Priority
    priority_level: int
    assigned_dept: str
    status: ComplaintStatus
    is_escalated: bool
    is_anonymous: bool
    rating: int | None
    rating_comment: str
    attachment_url: str
    created_at: datetime | None
    resolved_at: datetime | None
    owner: ComplaintOwner | None = None
    internal_note: str | None = None
    progress_step: int = 0
    awaiting_staff: bool = False
    can_reopen: bool = False
    can_escalate: bool = False
    can_rate: bool = False
    can_delete: bool = False

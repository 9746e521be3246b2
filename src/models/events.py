"""Typed lifecycle events emitted by complaint mutations.

The complaint service puts these on the notification channel after the
primary store write has succeeded; delivery (notification documents,
email) happens in a separate consumer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from src.models.enums import ComplaintStatus, Priority, Role


class EventType(StrEnum):
    __slots__ = ()

    COMPLAINT_FILED = "new_complaint"
    STATUS_CHANGED = "status_change"
    ESCALATED = "escalation"
    REOPENED = "reopened"
    REPLIED_TO = "complaint_reply"


class Recipient(BaseModel):
    """Exactly one of a user id, a role, or a department."""

    user_id: str | None = None
    role: Role | None = None
    department: str | None = None

    @model_validator(mode="after")
    def _exactly_one_target(self) -> Recipient:
        targets = [t for t in (self.user_id, self.role, self.department) if t]
        if len(targets) != 1:
            raise ValueError("a recipient needs exactly one of user_id, role or department")
        return self

    @classmethod
    def user(cls, user_id: str) -> Recipient:
        return cls(user_id=user_id)

    @classmethod
    def for_role(cls, role: Role) -> Recipient:
        return cls(role=role)

    @classmethod
    def for_department(cls, department: str) -> Recipient:
        return cls(department=department)


class LifecycleEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: uuid4().hex)
    complaint_id: str
    complaint_title: str
    actor_id: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ComplaintFiled(LifecycleEvent):
    type: Literal[EventType.COMPLAINT_FILED] = EventType.COMPLAINT_FILED
    priority: Priority
    assigned_dept: str
    owner_name: str = ""
    owner_email: str = ""


class StatusChanged(LifecycleEvent):
    type: Literal[EventType.STATUS_CHANGED] = EventType.STATUS_CHANGED
    old_status: ComplaintStatus
    new_status: ComplaintStatus
    owner_id: str
    owner_name: str = ""
    owner_email: str = ""


class Escalated(LifecycleEvent):
    type: Literal[EventType.ESCALATED] = EventType.ESCALATED
    assigned_dept: str


class Reopened(LifecycleEvent):
    type: Literal[EventType.REOPENED] = EventType.REOPENED
    assigned_dept: str


class RepliedTo(LifecycleEvent):
    type: Literal[EventType.REPLIED_TO] = EventType.REPLIED_TO
    author_role: Role
    author_label: str
    owner_id: str
    assigned_dept: str


ComplaintEvent = ComplaintFiled | StatusChanged | Escalated | Reopened | RepliedTo

from src.models.complaint import (
    Complaint,
    ComplaintOwner,
    ComplaintSubmission,
    ComplaintView,
    Reply,
    TriageTurn,
)
from src.models.context import (
    DepartmentResolution,
    Identity,
    ResolutionState,
    RoleContext,
)
from src.models.enums import (
    PRIORITY_LEVELS,
    Category,
    ComplaintStatus,
    Priority,
    Role,
    StatusFilter,
)
from src.models.events import (
    ComplaintEvent,
    ComplaintFiled,
    Escalated,
    EventType,
    LifecycleEvent,
    Recipient,
    RepliedTo,
    Reopened,
    StatusChanged,
)

__all__ = [
    "PRIORITY_LEVELS",
    "Category",
    "Complaint",
    "ComplaintEvent",
    "ComplaintFiled",
    "ComplaintOwner",
    "ComplaintStatus",
    "ComplaintSubmission",
    "ComplaintView",
    "DepartmentResolution",
    "Escalated",
    "EventType",
    "Identity",
    "LifecycleEvent",
    "Priority",
    "Recipient",
    "RepliedTo",
    "Reopened",
    "ResolutionState",
    "Reply",
    "Role",
    "RoleContext",
    "StatusChanged",
    "StatusFilter",
    "TriageTurn",
]

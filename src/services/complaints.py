"""Complaint service: every read and mutation a caller can perform.

Each operation takes an explicit :class:`RoleContext`.  Single-document
operations load the complaint and check it against the caller's
:class:`AccessScope` before anything else; eligibility rules run before
any write; the primary write is one store call (a batch where several
documents change together).  Only after that write succeeds are the
stats cache invalidated and a lifecycle event put on the notification
channel, so a delivery problem can never undo or fail the write itself.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any, Final

import structlog

from config.departments import get_department_names
from src.models.complaint import Complaint, ComplaintOwner, ComplaintSubmission, ComplaintView, Reply, TriageTurn
from src.models.enums import ComplaintStatus, Role, StatusFilter
from src.models.events import (
    ComplaintEvent,
    ComplaintFiled,
    Escalated,
    RepliedTo,
    Reopened,
    StatusChanged,
)
from src.services import lifecycle
from src.services.access_scope import COMPLAINTS, scope_for
from src.services.errors import AccessDenied, ComplaintNotFound, EligibilityError, StoreError
from src.services.store.base import SERVER_TIMESTAMP, Write

if TYPE_CHECKING:
    from src.models.context import RoleContext
    from src.services.eligibility import Decision, EligibilityRules
    from src.services.notifications import EventChannel
    from src.services.paging import PagedQueryEngine
    from src.services.stats import AnalyticsSummary, ComplaintStats, StatsAggregator
    from src.services.store.base import DocumentStore
    from src.services.triage import TriageService

logger = structlog.get_logger(__name__)

# Firestore caps a single batch at 500 writes.
MAX_BULK_UPDATE: Final[int] = 500
MAX_REPLY_LENGTH: Final[int] = 5_000


def replies_collection(complaint_id: str) -> str:
    return f"{COMPLAINTS}/{complaint_id}/replies"


@dataclass(slots=True)
class OperationResult:
    """Outcome of a mutation.

    ``secondary_effects`` is ``False`` when the primary write succeeded but
    a follow-up notification could not be queued.
    """

    complaint_id: str
    complaint: ComplaintView | None = None
    secondary_effects: bool = True


@dataclass(slots=True)
class BulkResult:
    updated: list[str] = field(default_factory=list)
    secondary_effects: bool = True


@dataclass(slots=True)
class ListResult:
    items: list[ComplaintView]
    cursor: str | None
    has_more: bool


class ComplaintService:
    """Façade over the store for complaint reads and lifecycle actions."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        rules: EligibilityRules,
        engine: PagedQueryEngine,
        stats: StatsAggregator,
        triage: TriageService,
        channel: EventChannel | None = None,
    ) -> None:
        self._store = store
        self._rules = rules
        self._engine = engine
        self._stats = stats
        self._triage = triage
        self._channel = channel

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_complaints(
        self,
        ctx: RoleContext,
        status_filter: StatusFilter = StatusFilter.ALL,
        cursor: str | None = None,
    ) -> ListResult:
        scope = scope_for(ctx)
        if cursor:
            page = await self._engine.next_page(scope, status_filter, cursor)
        else:
            page = await self._engine.first_page(scope, status_filter)
        return ListResult(
            items=[self.to_view(c, ctx) for c in page.items],
            cursor=page.cursor,
            has_more=page.has_more,
        )

    async def get(self, ctx: RoleContext, complaint_id: str) -> ComplaintView:
        return self.to_view(await self._load(ctx, complaint_id, "get"), ctx)

    async def stats(self, ctx: RoleContext) -> ComplaintStats:
        return await self._stats.counts(scope_for(ctx))

    async def analytics(
        self,
        ctx: RoleContext,
        *,
        start: date | None = None,
        end: date | None = None,
    ) -> AnalyticsSummary:
        self._require_staff(ctx, "analytics")
        return await self._stats.analytics(scope_for(ctx), start=start, end=end)

    async def list_replies(self, ctx: RoleContext, complaint_id: str) -> list[Reply]:
        await self._load(ctx, complaint_id, "list_replies")
        docs = await self._store.query(replies_collection(complaint_id), order_by="timestamp")
        return [Reply.from_document(d.doc_id, d.data) for d in docs]

    async def eligibility(self, ctx: RoleContext, complaint_id: str) -> dict[str, Decision]:
        complaint = await self._load(ctx, complaint_id, "eligibility")
        now = self._rules.now()
        return {
            "reopen": self._rules.reopen(complaint, ctx, now),
            "escalate": self._rules.escalate(complaint, ctx, now),
            "rate": self._rules.rate(complaint, ctx),
            "delete": self._rules.delete(complaint, ctx),
        }

    def to_view(self, complaint: Complaint, ctx: RoleContext) -> ComplaintView:
        """Project *complaint* for *ctx*.

        Anonymous complaints only show their creator to the creator; the
        internal note is staff-only.
        """
        show_owner = not complaint.is_anonymous or ctx.owns(complaint)
        stage = lifecycle.progress_stage(complaint.status)
        now = self._rules.now()
        return ComplaintView(
            complaint_id=complaint.complaint_id,
            title=complaint.title,
            description=complaint.description,
            category=complaint.category,
            priority=complaint.priority,
            priority_level=complaint.priority_level,
            assigned_dept=complaint.assigned_dept,
            status=complaint.status,
            is_escalated=complaint.is_escalated,
            is_anonymous=complaint.is_anonymous,
            rating=complaint.rating,
            rating_comment=complaint.rating_comment,
            attachment_url=complaint.attachment_url,
            created_at=complaint.created_at,
            resolved_at=complaint.resolved_at,
            owner=ComplaintOwner(
                user_name=complaint.user_name,
                user_email=complaint.user_email,
                user_roll_no=complaint.user_roll_no,
            )
            if show_owner
            else None,
            internal_note=complaint.internal_note if ctx.is_staff else None,
            progress_step=stage.index,
            awaiting_staff=stage.awaiting_staff,
            can_reopen=self._rules.reopen(complaint, ctx, now).allowed,
            can_escalate=self._rules.escalate(complaint, ctx, now).allowed,
            can_rate=self._rules.rate(complaint, ctx).allowed,
            can_delete=self._rules.delete(complaint, ctx).allowed,
        )

    # ------------------------------------------------------------------
    # Student actions
    # ------------------------------------------------------------------

    async def submit(self, ctx: RoleContext, submission: ComplaintSubmission) -> OperationResult:
        if ctx.role is not Role.STUDENT:
            raise AccessDenied("Only students can file complaints", operation="submit")

        description = submission.full_description()
        triage = await self._triage.categorize(description)

        data: dict[str, Any] = {
            "title": submission.title.strip(),
            "description": description,
            "category": triage.category.value,
            "priority": triage.priority.value,
            "priorityLevel": triage.priority_level,
            "assignedDept": triage.assigned_dept,
            "status": ComplaintStatus.PENDING.value,
            "isEscalated": False,
            "isAnonymous": submission.is_anonymous,
            "attachmentURL": submission.attachment_url,
            "internalNote": "",
            "rating": None,
            "ratingComment": "",
            "createdAt": SERVER_TIMESTAMP,
            "resolvedAt": None,
            "userId": ctx.uid,
            "userName": submission.user_name,
            "userEmail": ctx.email,
            "userRollNo": submission.user_roll_no,
        }
        complaint_id = await self._store.create(COMPLAINTS, data)
        logger.info(
            "complaints.submitted",
            complaint_id=complaint_id,
            category=triage.category.value,
            priority=triage.priority.value,
            department=triage.assigned_dept,
            triage_source=triage.source,
        )

        await self._stats.invalidate(data)
        queued = self._emit(
            ComplaintFiled(
                complaint_id=complaint_id,
                complaint_title=data["title"],
                actor_id=ctx.uid,
                priority=triage.priority,
                assigned_dept=triage.assigned_dept,
                owner_name=submission.user_name,
                owner_email=ctx.email,
            )
        )
        return await self._result(ctx, complaint_id, queued)

    async def assist(self, message: str, history: list[TriageTurn] | None = None) -> str:
        return await self._triage.assist(message, history)

    async def escalate(self, ctx: RoleContext, complaint_id: str) -> OperationResult:
        complaint = await self._load(ctx, complaint_id, "escalate")
        self._rules.escalate(complaint, ctx).require()

        await self._store.update(COMPLAINTS, complaint_id, {"isEscalated": True})
        logger.info("complaints.escalated", complaint_id=complaint_id, department=complaint.assigned_dept)

        queued = self._emit(
            Escalated(
                complaint_id=complaint_id,
                complaint_title=complaint.title,
                actor_id=ctx.uid,
                assigned_dept=complaint.assigned_dept,
            )
        )
        return await self._result(ctx, complaint_id, queued)

    async def reopen(self, ctx: RoleContext, complaint_id: str) -> OperationResult:
        complaint = await self._load(ctx, complaint_id, "reopen")
        self._rules.reopen(complaint, ctx).require()

        transition = lifecycle.on_reopen(complaint.status)
        await self._store.update(COMPLAINTS, complaint_id, {"status": transition.status.value})
        logger.info("complaints.reopened", complaint_id=complaint_id)

        await self._stats.invalidate(complaint.to_document())
        queued = self._emit(
            Reopened(
                complaint_id=complaint_id,
                complaint_title=complaint.title,
                actor_id=ctx.uid,
                assigned_dept=complaint.assigned_dept,
            )
        )
        return await self._result(ctx, complaint_id, queued)

    async def rate(
        self,
        ctx: RoleContext,
        complaint_id: str,
        rating: int,
        comment: str = "",
    ) -> OperationResult:
        complaint = await self._load(ctx, complaint_id, "rate")
        self._rules.rate(complaint, ctx).require()
        if not 1 <= rating <= 5:
            raise EligibilityError("rate", "Ratings go from 1 to 5 stars.")

        await self._store.update(
            COMPLAINTS,
            complaint_id,
            {"rating": rating, "ratingComment": comment.strip()},
        )
        logger.info("complaints.rated", complaint_id=complaint_id, rating=rating)
        return await self._result(ctx, complaint_id)

    async def delete(self, ctx: RoleContext, complaint_id: str) -> OperationResult:
        complaint = await self._load(ctx, complaint_id, "delete")
        decision = self._rules.delete(complaint, ctx)
        if not decision:
            raise AccessDenied(decision.reason, operation="delete")

        replies = await self._store.query(replies_collection(complaint_id))
        writes = [Write.delete(replies_collection(complaint_id), r.doc_id) for r in replies]
        writes.append(Write.delete(COMPLAINTS, complaint_id))
        await self._store.commit(writes)
        logger.info("complaints.deleted", complaint_id=complaint_id, replies=len(replies), by_role=ctx.role.value)

        await self._stats.invalidate(complaint.to_document())
        return OperationResult(complaint_id)

    # ------------------------------------------------------------------
    # Shared actions
    # ------------------------------------------------------------------

    async def reply(self, ctx: RoleContext, complaint_id: str, text: str) -> OperationResult:
        """Append a reply and move the status in the same batch.

        The new status comes from who is replying (staff -> ``Responded``,
        owner -> ``User Responded``), not from the status that was read.
        """
        text = text.strip()
        if not text:
            raise EligibilityError("reply", "A reply cannot be empty.")
        if len(text) > MAX_REPLY_LENGTH:
            raise EligibilityError("reply", f"Replies are limited to {MAX_REPLY_LENGTH} characters.")

        complaint = await self._load(ctx, complaint_id, "reply")
        if not ctx.is_staff and not ctx.owns(complaint):
            raise AccessDenied("Only the owner or staff can reply", operation="reply")

        transition = lifecycle.on_reply(complaint.status, by_staff=ctx.is_staff)
        writes = [
            Write.create(
                replies_collection(complaint_id),
                {
                    "text": text,
                    "author": ctx.author_label,
                    "authorId": ctx.uid,
                    "timestamp": SERVER_TIMESTAMP,
                },
            )
        ]
        if transition.changed:
            writes.append(Write.update(COMPLAINTS, complaint_id, {"status": transition.status.value}))
        await self._store.commit(writes)
        logger.info(
            "complaints.replied",
            complaint_id=complaint_id,
            by_role=ctx.role.value,
            status=transition.status.value,
        )

        if transition.changed:
            await self._stats.invalidate(complaint.to_document())
        queued = self._emit(
            RepliedTo(
                complaint_id=complaint_id,
                complaint_title=complaint.title,
                actor_id=ctx.uid,
                author_role=ctx.role,
                author_label=ctx.author_label,
                owner_id=complaint.user_id,
                assigned_dept=complaint.assigned_dept,
            )
        )
        return await self._result(ctx, complaint_id, queued)

    # ------------------------------------------------------------------
    # Staff actions
    # ------------------------------------------------------------------

    async def update_status(
        self,
        ctx: RoleContext,
        complaint_id: str,
        status: ComplaintStatus,
    ) -> OperationResult:
        self._require_staff(ctx, "update_status")
        complaint = await self._load(ctx, complaint_id, "update_status")

        transition = lifecycle.on_staff_edit(
            complaint.status,
            status,
            has_resolved_at=complaint.resolved_at is not None,
        )
        if not transition.changed and not transition.stamp_resolved_at:
            return await self._result(ctx, complaint_id)

        await self._store.update(COMPLAINTS, complaint_id, self._status_fields(transition))
        logger.info(
            "complaints.status_changed",
            complaint_id=complaint_id,
            old_status=transition.previous.value,
            new_status=transition.status.value,
        )

        await self._stats.invalidate(complaint.to_document())
        queued = True
        if transition.changed:
            queued = self._emit(self._status_event(complaint, transition, ctx))
        return await self._result(ctx, complaint_id, queued)

    async def bulk_update_status(
        self,
        ctx: RoleContext,
        complaint_ids: Sequence[str],
        status: ComplaintStatus,
    ) -> BulkResult:
        """Set *status* on every complaint in one atomic batch: all or none."""
        self._require_staff(ctx, "bulk_update_status")
        ids = list(dict.fromkeys(complaint_ids))
        if not ids:
            raise EligibilityError("bulk_update_status", "Select at least one complaint.")
        if len(ids) > MAX_BULK_UPDATE:
            raise EligibilityError("bulk_update_status", f"At most {MAX_BULK_UPDATE} complaints can be updated at once.")

        # Every target is loaded and scope-checked before the batch is built.
        complaints = [await self._load(ctx, cid, "bulk_update_status") for cid in ids]

        writes: list[Write] = []
        transitions: list[tuple[Complaint, lifecycle.Transition]] = []
        for complaint in complaints:
            transition = lifecycle.on_staff_edit(
                complaint.status,
                status,
                has_resolved_at=complaint.resolved_at is not None,
            )
            if not transition.changed and not transition.stamp_resolved_at:
                continue
            writes.append(Write.update(COMPLAINTS, complaint.complaint_id, self._status_fields(transition)))
            transitions.append((complaint, transition))

        if writes:
            await self._store.commit(writes)
        logger.info(
            "complaints.bulk_status_changed",
            requested=len(ids),
            written=len(writes),
            new_status=status.value,
        )

        result = BulkResult(updated=[c.complaint_id for c, _ in transitions])
        if transitions:
            await self._stats.invalidate(*(c.to_document() for c, _ in transitions))
        for complaint, transition in transitions:
            if transition.changed and not self._emit(self._status_event(complaint, transition, ctx)):
                result.secondary_effects = False
        return result

    async def assign_department(self, ctx: RoleContext, complaint_id: str, department: str) -> OperationResult:
        if ctx.role is not Role.ADMIN:
            raise AccessDenied("Only administrators can reassign complaints", operation="assign_department")
        if department not in get_department_names():
            raise EligibilityError("assign_department", f"Unknown department {department!r}.")

        complaint = await self._load(ctx, complaint_id, "assign_department")
        if complaint.assigned_dept == department:
            return await self._result(ctx, complaint_id)

        await self._store.update(COMPLAINTS, complaint_id, {"assignedDept": department})
        logger.info(
            "complaints.reassigned",
            complaint_id=complaint_id,
            old_department=complaint.assigned_dept,
            new_department=department,
        )
        before = complaint.to_document()
        await self._stats.invalidate(before, {**before, "assignedDept": department})
        return await self._result(ctx, complaint_id)

    async def set_internal_note(self, ctx: RoleContext, complaint_id: str, note: str) -> OperationResult:
        self._require_staff(ctx, "set_internal_note")
        await self._load(ctx, complaint_id, "set_internal_note")
        await self._store.update(COMPLAINTS, complaint_id, {"internalNote": note.strip()})
        logger.info("complaints.note_updated", complaint_id=complaint_id)
        return await self._result(ctx, complaint_id)

    async def suggest_replies(self, ctx: RoleContext, complaint_id: str) -> list[str]:
        self._require_staff(ctx, "suggest_replies")
        complaint = await self._load(ctx, complaint_id, "suggest_replies")
        return await self._triage.suggest_replies(complaint.description)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _reload(self, complaint_id: str) -> Complaint:
        doc = await self._store.get(COMPLAINTS, complaint_id)
        if doc is None:
            raise ComplaintNotFound(complaint_id)
        return Complaint.from_document(doc.doc_id, doc.data)

    async def _load(self, ctx: RoleContext, complaint_id: str, operation: str) -> Complaint:
        scope = scope_for(ctx)
        complaint = await self._reload(complaint_id)
        if not scope.admits(complaint):
            logger.warning(
                "complaints.out_of_scope",
                complaint_id=complaint_id,
                scope=scope.key,
                operation=operation,
            )
            raise AccessDenied("You do not have access to this complaint", operation=operation)
        return complaint

    async def _result(self, ctx: RoleContext, complaint_id: str, queued: bool = True) -> OperationResult:
        """Result of a mutation whose primary write already succeeded.

        A failed re-read only costs the refreshed view, never the result.
        """
        try:
            complaint = await self._reload(complaint_id)
        except StoreError:
            logger.warning("complaints.reload_failed", complaint_id=complaint_id, exc_info=True)
            return OperationResult(complaint_id, None, queued)
        return OperationResult(complaint_id, self.to_view(complaint, ctx), queued)

    @staticmethod
    def _require_staff(ctx: RoleContext, operation: str) -> None:
        if not ctx.is_staff:
            raise AccessDenied("This action is limited to staff", operation=operation)

    @staticmethod
    def _status_fields(transition: lifecycle.Transition) -> dict[str, Any]:
        fields: dict[str, Any] = {"status": transition.status.value}
        if transition.stamp_resolved_at:
            fields["resolvedAt"] = SERVER_TIMESTAMP
        return fields

    @staticmethod
    def _status_event(
        complaint: Complaint,
        transition: lifecycle.Transition,
        ctx: RoleContext,
    ) -> StatusChanged:
        return StatusChanged(
            complaint_id=complaint.complaint_id,
            complaint_title=complaint.title,
            actor_id=ctx.uid,
            old_status=transition.previous,
            new_status=transition.status,
            owner_id=complaint.user_id,
            owner_name=complaint.user_name,
            owner_email=complaint.user_email,
        )

    def _emit(self, event: ComplaintEvent) -> bool:
        if self._channel is None:
            return True
        try:
            return self._channel.emit(event)
        except Exception:
            logger.warning("complaints.event_emit_failed", event_type=event.type.value, exc_info=True)
            return False

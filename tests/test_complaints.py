"""Tests for the complaint service: reads, lifecycle actions and staff tools."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.models.complaint import ComplaintSubmission, TriageTurn
from src.models.context import RoleContext
from src.models.enums import Category, ComplaintStatus, Priority, Role, StatusFilter
from src.models.events import ComplaintFiled, Escalated, RepliedTo, Reopened, StatusChanged
from src.services.cache import CacheManager
from src.services.complaints import ComplaintService, replies_collection
from src.services.eligibility import EligibilityRules
from src.services.errors import (
    AccessDenied,
    ComplaintNotFound,
    DocumentNotFound,
    EligibilityError,
    ScopeNotReady,
    TransientStoreError,
)
from src.services.notifications import EventChannel
from src.services.paging import PagedQueryEngine
from src.services.stats import StatsAggregator
from src.services.store import InMemoryDocumentStore
from src.services.triage import FALLBACK_SUGGESTIONS, TriageService
from tests.factories import T0, FakeClock, admin, complaint_doc, department, drain, student


def _submission(**overrides) -> ComplaintSubmission:
    data = {
        "title": "Wi-Fi outage",
        "description": "Wi-Fi down in Hostel B, urgent",
        "user_name": "Asha Rao",
        "user_roll_no": "CS21B001",
    }
    data.update(overrides)
    return ComplaintSubmission(**data)


async def _doc(store: InMemoryDocumentStore, complaint_id: str) -> dict:
    doc = await store.get("complaints", complaint_id)
    assert doc is not None
    return doc.data


# -----------------------------------------------------------------------
# Submit
# -----------------------------------------------------------------------


class TestSubmit:
    async def test_submit_with_ai_failure_uses_keyword_fallback(
        self,
        store: InMemoryDocumentStore,
        clock: FakeClock,
        channel: EventChannel,
    ) -> None:
        triage = TriageService(project_id="campus-test")
        triage._generate_text = AsyncMock(side_effect=RuntimeError("model unavailable"))
        service = ComplaintService(
            store,
            rules=EligibilityRules(clock=clock),
            engine=PagedQueryEngine(store),
            stats=StatsAggregator(store),
            triage=triage,
            channel=channel,
        )

        result = await service.submit(student(), _submission())
        data = await _doc(store, result.complaint_id)
        assert data["category"] == "Other"
        assert data["priority"] == "High", "'urgent' is a high-priority keyword"
        assert data["priorityLevel"] == 1
        assert data["assignedDept"] == "Unassigned"
        assert data["status"] == "Pending"
        assert data["createdAt"] == T0

    async def test_submit_records_owner_and_emits_event(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        channel: EventChannel,
    ) -> None:
        result = await service.submit(student(), _submission(is_anonymous=True))
        data = await _doc(store, result.complaint_id)
        assert data["userId"] == "stu-1"
        assert data["userEmail"] == "asha@campus.edu"
        assert data["isAnonymous"] is True
        assert result.complaint is not None
        assert result.complaint.owner is not None, "the creator sees their own details"

        events = drain(channel)
        assert len(events) == 1
        assert isinstance(events[0], ComplaintFiled)
        assert events[0].owner_email == "asha@campus.edu"

    async def test_submit_uses_ai_triage(
        self,
        store: InMemoryDocumentStore,
        clock: FakeClock,
    ) -> None:
        triage = TriageService(project_id="campus-test")
        triage._generate_text = AsyncMock(
            return_value='{"category": "Network", "priority": "Medium", "assignedDept": "IT Department"}'
        )
        service = ComplaintService(
            store,
            rules=EligibilityRules(clock=clock),
            engine=PagedQueryEngine(store),
            stats=StatsAggregator(store),
            triage=triage,
        )
        result = await service.submit(student(), _submission())
        assert result.complaint is not None
        assert result.complaint.category is Category.NETWORK
        assert result.complaint.priority is Priority.MEDIUM
        assert result.complaint.assigned_dept == "IT Department"

    async def test_triage_log_is_appended(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        log = [TriageTurn(role="user", text="router blinking"), TriageTurn(role="assistant", text="restart it")]
        result = await service.submit(student(), _submission(triage_log=log))
        description = (await _doc(store, result.complaint_id))["description"]
        assert description.startswith("Initial Issue: Wi-Fi down")
        assert "--- AI Triage Log ---" in description
        assert "assistant: restart it" in description

    async def test_submit_survives_failed_reload(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        channel: EventChannel,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(
            InMemoryDocumentStore,
            "get",
            AsyncMock(side_effect=TransientStoreError("deadline exceeded")),
        )
        result = await service.submit(student(), _submission())

        assert result.complaint is None
        assert result.secondary_effects is True
        assert list(store.snapshot("complaints")) == [result.complaint_id]
        [event] = drain(channel)
        assert isinstance(event, ComplaintFiled)
        assert event.complaint_id == result.complaint_id
        assert event.complaint_title == "Wi-Fi outage"
        assert event.priority is Priority.HIGH

    @pytest.mark.parametrize("ctx", [department(), admin()])
    async def test_only_students_submit(self, service: ComplaintService, ctx: RoleContext) -> None:
        with pytest.raises(AccessDenied):
            await service.submit(ctx, _submission())


# -----------------------------------------------------------------------
# Student actions
# -----------------------------------------------------------------------


class TestEscalate:
    async def test_escalate_too_early_writes_nothing(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        clock: FakeClock,
        channel: EventChannel,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        clock.advance(days=2)
        before = store.snapshot("complaints")

        with pytest.raises(EligibilityError) as excinfo:
            await service.escalate(student(), "c1")
        assert excinfo.value.rule == "escalate"
        assert store.snapshot("complaints") == before
        assert drain(channel) == []

    async def test_escalate_after_window(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        clock: FakeClock,
        channel: EventChannel,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        clock.advance(days=3)
        result = await service.escalate(student(), "c1")
        assert result.complaint is not None
        assert result.complaint.is_escalated
        assert not result.complaint.can_escalate, "escalation happens once"
        assert isinstance(drain(channel)[0], Escalated)


class TestReopen:
    async def test_reopen_within_window_keeps_resolved_at(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        clock: FakeClock,
        channel: EventChannel,
    ) -> None:
        store.put("complaints", "c1", complaint_doc(status="Resolved", resolvedAt=T0))
        clock.advance(days=7)
        result = await service.reopen(student(), "c1")

        data = await _doc(store, "c1")
        assert data["status"] == "Re-opened"
        assert data["resolvedAt"] == T0
        assert result.complaint is not None
        assert result.complaint.progress_step == 1
        assert isinstance(drain(channel)[0], Reopened)

    async def test_reopen_after_window_is_refused(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        clock: FakeClock,
    ) -> None:
        store.put("complaints", "c1", complaint_doc(status="Resolved", resolvedAt=T0))
        clock.advance(days=7, seconds=1)
        with pytest.raises(EligibilityError):
            await service.reopen(student(), "c1")
        assert (await _doc(store, "c1"))["status"] == "Resolved"


class TestRateAndDelete:
    async def test_rate_once(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc(status="Resolved", resolvedAt=T0))
        await service.rate(student(), "c1", 4, "  quick fix  ")
        data = await _doc(store, "c1")
        assert (data["rating"], data["ratingComment"]) == (4, "quick fix")
        with pytest.raises(EligibilityError):
            await service.rate(student(), "c1", 5)

    async def test_rating_out_of_range(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc(status="Resolved", resolvedAt=T0))
        with pytest.raises(EligibilityError):
            await service.rate(student(), "c1", 6)

    async def test_delete_removes_complaint_and_replies(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        await service.reply(department(), "c1", "Looking into it")
        await service.delete(student(), "c1")
        assert await store.get("complaints", "c1") is None
        assert store.snapshot(replies_collection("c1")) == {}

    async def test_department_cannot_delete(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc())
        with pytest.raises(AccessDenied):
            await service.delete(department(), "c1")
        assert await store.get("complaints", "c1") is not None


# -----------------------------------------------------------------------
# Replies
# -----------------------------------------------------------------------


class TestReply:
    async def test_staff_reply_and_status_in_one_batch(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        channel: EventChannel,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        result = await service.reply(department(), "c1", "  Technician assigned.  ")

        assert result.complaint is not None
        assert result.complaint.status is ComplaintStatus.RESPONDED
        replies = await service.list_replies(student(), "c1")
        assert [(r.text, r.author) for r in replies] == [("Technician assigned.", "Department Admin")]

        event = drain(channel)[0]
        assert isinstance(event, RepliedTo)
        assert event.author_role is Role.DEPARTMENT

    async def test_owner_reply_sets_user_responded(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
    ) -> None:
        store.put("complaints", "c1", complaint_doc(status="Responded"))
        result = await service.reply(student(), "c1", "Still broken")
        assert result.complaint is not None
        assert result.complaint.status is ComplaintStatus.USER_RESPONDED
        assert result.complaint.awaiting_staff

    async def test_reply_on_resolved_keeps_status(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
    ) -> None:
        store.put("complaints", "c1", complaint_doc(status="Resolved", resolvedAt=T0))
        await service.reply(student(), "c1", "Thanks!")
        assert (await _doc(store, "c1"))["status"] == "Resolved"
        assert len(await service.list_replies(student(), "c1")) == 1

    async def test_replies_are_oldest_first(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc())
        await service.reply(department(), "c1", "first")
        await service.reply(student(), "c1", "second")
        await service.reply(admin(), "c1", "third")
        replies = await service.list_replies(admin(), "c1")
        assert [r.text for r in replies] == ["first", "second", "third"]
        assert replies[-1].author == "Admin Admin"

    async def test_empty_reply_is_refused(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc())
        with pytest.raises(EligibilityError):
            await service.reply(student(), "c1", "   ")

    async def test_other_student_cannot_reply(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc())
        with pytest.raises(AccessDenied):
            await service.reply(student(uid="stu-2"), "c1", "me too")


# -----------------------------------------------------------------------
# Staff actions
# -----------------------------------------------------------------------


class TestStatusUpdates:
    async def test_resolve_stamps_resolved_at(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        channel: EventChannel,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        result = await service.update_status(department(), "c1", ComplaintStatus.RESOLVED)
        assert result.complaint is not None
        assert result.complaint.resolved_at is not None

        event = drain(channel)[0]
        assert isinstance(event, StatusChanged)
        assert (event.old_status, event.new_status) == (ComplaintStatus.PENDING, ComplaintStatus.RESOLVED)

    async def test_same_status_is_a_no_op(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        channel: EventChannel,
    ) -> None:
        store.put("complaints", "c1", complaint_doc(status="In Progress"))
        await service.update_status(admin(), "c1", ComplaintStatus.IN_PROGRESS)
        assert drain(channel) == []

    async def test_students_cannot_set_status(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc())
        with pytest.raises(AccessDenied):
            await service.update_status(student(), "c1", ComplaintStatus.RESOLVED)

    async def test_department_limited_to_its_complaints(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        with pytest.raises(AccessDenied):
            await service.update_status(department("Library"), "c1", ComplaintStatus.RESOLVED)

    async def test_missing_complaint(self, service: ComplaintService) -> None:
        with pytest.raises(ComplaintNotFound):
            await service.update_status(admin(), "nope", ComplaintStatus.RESOLVED)


class TestBulkUpdate:
    async def test_bulk_resolve(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        channel: EventChannel,
    ) -> None:
        for cid in ("c1", "c2", "c3"):
            store.put("complaints", cid, complaint_doc())
        result = await service.bulk_update_status(admin(), ["c1", "c2", "c3", "c1"], ComplaintStatus.RESOLVED)

        assert sorted(result.updated) == ["c1", "c2", "c3"]
        for cid in ("c1", "c2", "c3"):
            data = await _doc(store, cid)
            assert data["status"] == "Resolved"
            assert data["resolvedAt"] is not None
        assert len(drain(channel)) == 3

    async def test_bulk_failure_modifies_nothing(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        channel: EventChannel,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        for cid in ("c1", "c2", "c3"):
            store.put("complaints", cid, complaint_doc())
        original_commit = InMemoryDocumentStore.commit

        async def commit_after_concurrent_delete(self, writes):
            # c2 disappears between the reads and the batch.
            self._collections["complaints"].pop("c2", None)
            return await original_commit(self, writes)

        monkeypatch.setattr(InMemoryDocumentStore, "commit", commit_after_concurrent_delete)
        with pytest.raises(DocumentNotFound):
            await service.bulk_update_status(admin(), ["c1", "c2", "c3"], ComplaintStatus.RESOLVED)

        for cid in ("c1", "c3"):
            data = await _doc(store, cid)
            assert data["status"] == "Pending"
            assert data["resolvedAt"] is None
        assert drain(channel) == []

    async def test_bulk_with_out_of_scope_id_is_refused(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        store.put("complaints", "c2", complaint_doc(assignedDept="Library"))
        with pytest.raises(AccessDenied):
            await service.bulk_update_status(department(), ["c1", "c2"], ComplaintStatus.RESOLVED)
        assert (await _doc(store, "c1"))["status"] == "Pending"

    async def test_bulk_needs_ids(self, service: ComplaintService) -> None:
        with pytest.raises(EligibilityError):
            await service.bulk_update_status(admin(), [], ComplaintStatus.RESOLVED)


class TestAdminTools:
    async def test_assign_department_moves_counts(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        assert (await service.stats(department("Hostel Affairs"))).total == 1
        assert (await service.stats(department("Library"))).total == 0

        await service.assign_department(admin(), "c1", "Library")
        assert (await service.stats(department("Hostel Affairs"))).total == 0
        assert (await service.stats(department("Library"))).total == 1

    async def test_assign_department_checks_role_and_name(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        with pytest.raises(AccessDenied):
            await service.assign_department(department(), "c1", "Library")
        with pytest.raises(EligibilityError):
            await service.assign_department(admin(), "c1", "Canteen")

    async def test_internal_note_is_staff_only(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        await service.set_internal_note(department(), "c1", "Call the vendor")
        assert (await service.get(admin(), "c1")).internal_note == "Call the vendor"
        assert (await service.get(student(), "c1")).internal_note is None
        with pytest.raises(AccessDenied):
            await service.set_internal_note(student(), "c1", "hi")

    async def test_suggestions_fall_back(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc())
        assert await service.suggest_replies(department(), "c1") == list(FALLBACK_SUGGESTIONS)
        with pytest.raises(AccessDenied):
            await service.suggest_replies(student(), "c1")


# -----------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------


class TestReads:
    async def test_anonymous_complaint_hides_owner_from_staff(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
    ) -> None:
        store.put("complaints", "c1", complaint_doc(isAnonymous=True))
        view = await service.get(department(), "c1")
        assert view.owner is None
        dumped = view.model_dump()
        for field in ("user_name", "user_email", "user_roll_no", "userName", "userEmail", "userRollNo"):
            assert field not in dumped
        assert (await service.get(admin(), "c1")).owner is None
        assert (await service.get(student(), "c1")).owner is not None

    async def test_named_complaint_shows_owner(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc())
        owner = (await service.get(department(), "c1")).owner
        assert owner is not None
        assert owner.user_roll_no == "CS21B001"

    async def test_list_is_scoped(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc())
        store.put("complaints", "c2", complaint_doc(userId="stu-2", createdAt=T0 + timedelta(minutes=1)))
        mine = await service.list_complaints(student())
        assert [v.complaint_id for v in mine.items] == ["c1"]
        everything = await service.list_complaints(admin(), StatusFilter.PENDING)
        assert [v.complaint_id for v in everything.items] == ["c2", "c1"]

    async def test_list_before_department_resolves(self, service: ComplaintService) -> None:
        with pytest.raises(ScopeNotReady):
            await service.list_complaints(RoleContext(role=Role.DEPARTMENT, uid="d1"))

    async def test_eligibility_flags(
        self,
        service: ComplaintService,
        store: InMemoryDocumentStore,
        clock: FakeClock,
    ) -> None:
        store.put("complaints", "c1", complaint_doc())
        clock.advance(days=4)
        decisions = await service.eligibility(student(), "c1")
        assert decisions["escalate"].allowed
        assert not decisions["reopen"].allowed
        assert decisions["delete"].allowed
        view = await service.get(student(), "c1")
        assert view.can_escalate and view.can_delete and not view.can_rate

    async def test_analytics_is_staff_only(self, service: ComplaintService, store: InMemoryDocumentStore) -> None:
        store.put("complaints", "c1", complaint_doc())
        with pytest.raises(AccessDenied):
            await service.analytics(student())
        assert (await service.analytics(admin())).total == 1


class TestSecondaryEffects:
    async def test_full_channel_does_not_fail_the_write(
        self,
        store: InMemoryDocumentStore,
        clock: FakeClock,
    ) -> None:
        channel = EventChannel(maxsize=1)
        service = ComplaintService(
            store,
            rules=EligibilityRules(clock=clock),
            engine=PagedQueryEngine(store),
            stats=StatsAggregator(store, CacheManager(namespace="t:")),
            triage=TriageService(project_id=""),
            channel=channel,
        )
        store.put("complaints", "c1", complaint_doc())
        first = await service.reply(department(), "c1", "one")
        second = await service.reply(department(), "c1", "two")
        assert first.secondary_effects
        assert not second.secondary_effects
        assert len(await service.list_replies(admin(), "c1")) == 2

"""Tests for complaint, context and event models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.models.complaint import Complaint, ComplaintSubmission, TriageTurn
from src.models.context import DepartmentResolution, ResolutionState, RoleContext
from src.models.enums import Category, ComplaintStatus, Priority, Role, StatusFilter
from src.models.events import EventType, StatusChanged
from tests.factories import complaint_doc, department, student


class TestComplaint:
    def test_document_round_trip_keeps_camel_case(self) -> None:
        complaint = Complaint.from_document("c1", complaint_doc())
        assert complaint.complaint_id == "c1"
        assert complaint.assigned_dept == "Hostel Affairs"
        doc = complaint.to_document()
        assert doc["assignedDept"] == "Hostel Affairs"
        assert "id" not in doc
        assert "complaint_id" not in doc

    def test_legacy_documents_get_defaults(self) -> None:
        complaint = Complaint.from_document(
            "old",
            {"title": "Old", "userId": "u1", "category": None, "assignedDept": ""},
        )
        assert complaint.category is Category.OTHER
        assert complaint.assigned_dept == "Unassigned"
        assert complaint.status is ComplaintStatus.PENDING

    def test_legacy_general_category_is_kept(self) -> None:
        assert Complaint.from_document("c", complaint_doc(category="General")).category is Category.GENERAL

    def test_priority_level_follows_priority(self) -> None:
        complaint = Complaint.from_document("c", complaint_doc(priority="High", priorityLevel=3))
        assert complaint.priority_level == 1

    def test_rating_range(self) -> None:
        with pytest.raises(ValidationError):
            Complaint.from_document("c", complaint_doc(rating=6))

    def test_unknown_status_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Complaint.from_document("c", complaint_doc(status="Closed"))


class TestSubmission:
    def test_title_length(self) -> None:
        with pytest.raises(ValidationError):
            ComplaintSubmission(title="no", description="valid text", user_name="A", user_roll_no="1")

    def test_full_description_without_log(self) -> None:
        sub = ComplaintSubmission(title="Fan", description="Fan broken", user_name="A", user_roll_no="1")
        assert sub.full_description() == "Fan broken"

    def test_triage_turn_roles(self) -> None:
        with pytest.raises(ValidationError):
            TriageTurn(role="system", text="x")


class TestRoleContext:
    def test_department_name_only_when_resolved(self) -> None:
        ctx = RoleContext(role=Role.DEPARTMENT, uid="d1")
        assert ctx.department_name is None
        assert ctx.department.state is ResolutionState.UNRESOLVED
        assert department("Library").department_name == "Library"

    def test_resolved_needs_a_name(self) -> None:
        with pytest.raises(ValueError):
            DepartmentResolution.resolved("")

    def test_owns_is_student_only(self) -> None:
        complaint = Complaint.from_document("c1", complaint_doc())
        assert student().owns(complaint)
        assert not student(uid="stu-2").owns(complaint)
        assert not RoleContext(role=Role.ADMIN, uid="stu-1").owns(complaint)

    def test_author_labels(self) -> None:
        assert student().author_label == "Student"
        assert department().author_label == "Department Admin"


class TestEnums:
    def test_status_filter_maps_to_status(self) -> None:
        assert StatusFilter.ALL.status is None
        assert StatusFilter.REOPENED.status is ComplaintStatus.REOPENED

    def test_staff_roles(self) -> None:
        assert not Role.STUDENT.is_staff
        assert Role.DEPARTMENT.is_staff and Role.ADMIN.is_staff

    def test_event_type_values(self) -> None:
        event = StatusChanged(
            complaint_id="c1",
            complaint_title="t",
            actor_id="a",
            old_status=ComplaintStatus.PENDING,
            new_status=ComplaintStatus.RESOLVED,
            owner_id="u1",
        )
        assert event.type is EventType.STATUS_CHANGED
        assert event.type.value == "status_change"
        assert Priority("High") is Priority.HIGH

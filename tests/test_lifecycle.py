"""Tests for the complaint status machine."""

from __future__ import annotations

import pytest

from src.models.enums import ComplaintStatus
from src.services import lifecycle


class TestReplyTransitions:
    @pytest.mark.parametrize(
        "current",
        [
            ComplaintStatus.PENDING,
            ComplaintStatus.IN_PROGRESS,
            ComplaintStatus.RESPONDED,
            ComplaintStatus.USER_RESPONDED,
            ComplaintStatus.REOPENED,
        ],
    )
    def test_staff_reply_moves_active_complaint_to_responded(self, current: ComplaintStatus) -> None:
        transition = lifecycle.on_reply(current, by_staff=True)
        assert transition.status is ComplaintStatus.RESPONDED
        assert transition.previous is current

    def test_owner_reply_moves_to_user_responded(self) -> None:
        transition = lifecycle.on_reply(ComplaintStatus.RESPONDED, by_staff=False)
        assert transition.status is ComplaintStatus.USER_RESPONDED
        assert transition.changed

    def test_reply_on_resolved_keeps_status(self) -> None:
        for by_staff in (True, False):
            transition = lifecycle.on_reply(ComplaintStatus.RESOLVED, by_staff=by_staff)
            assert transition.status is ComplaintStatus.RESOLVED
            assert not transition.changed, "a resolved complaint has to be reopened first"

    def test_repeated_staff_reply_is_unchanged(self) -> None:
        transition = lifecycle.on_reply(ComplaintStatus.RESPONDED, by_staff=True)
        assert not transition.changed


class TestStaffEdit:
    def test_entering_resolved_stamps_and_notifies(self) -> None:
        transition = lifecycle.on_staff_edit(ComplaintStatus.IN_PROGRESS, ComplaintStatus.RESOLVED)
        assert transition.stamp_resolved_at
        assert transition.notify_resolved

    def test_resolved_to_resolved_is_a_no_op(self) -> None:
        transition = lifecycle.on_staff_edit(ComplaintStatus.RESOLVED, ComplaintStatus.RESOLVED)
        assert not transition.changed
        assert not transition.stamp_resolved_at
        assert not transition.notify_resolved

    def test_unstamped_resolved_document_gets_stamped(self) -> None:
        transition = lifecycle.on_staff_edit(
            ComplaintStatus.RESOLVED,
            ComplaintStatus.RESOLVED,
            has_resolved_at=False,
        )
        assert transition.stamp_resolved_at
        assert not transition.notify_resolved, "no second resolved email"

    def test_any_status_may_be_set(self) -> None:
        transition = lifecycle.on_staff_edit(ComplaintStatus.RESOLVED, ComplaintStatus.PENDING)
        assert transition.status is ComplaintStatus.PENDING
        assert not transition.stamp_resolved_at


class TestReopen:
    def test_reopen_targets_reopened(self) -> None:
        transition = lifecycle.on_reopen(ComplaintStatus.RESOLVED)
        assert transition.status is ComplaintStatus.REOPENED
        assert not transition.stamp_resolved_at


class TestProgressStage:
    @pytest.mark.parametrize(
        ("status", "index", "awaiting_staff"),
        [
            (ComplaintStatus.PENDING, 0, False),
            (ComplaintStatus.IN_PROGRESS, 1, False),
            (ComplaintStatus.RESPONDED, 2, False),
            (ComplaintStatus.USER_RESPONDED, 2, True),
            (ComplaintStatus.RESOLVED, 3, False),
            (ComplaintStatus.REOPENED, 1, False),
        ],
    )
    def test_stage_mapping(self, status: ComplaintStatus, index: int, awaiting_staff: bool) -> None:
        stage = lifecycle.progress_stage(status)
        assert stage.index == index
        assert stage.awaiting_staff is awaiting_staff

    def test_percent_is_step_midpoint(self) -> None:
        assert lifecycle.progress_stage(ComplaintStatus.PENDING).percent == 12.5
        assert lifecycle.progress_stage(ComplaintStatus.RESOLVED).percent == 87.5

    def test_only_resolved_is_inactive(self) -> None:
        assert not lifecycle.is_active(ComplaintStatus.RESOLVED)
        assert all(lifecycle.is_active(s) for s in ComplaintStatus if s is not ComplaintStatus.RESOLVED)

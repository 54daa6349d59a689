from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.auth import Principal, Role
from app.services.policy import (
    Decision,
    DenialReason,
    PolicyDeniedError,
    PostingAction,
    decide,
    decide_application_update,
    decide_apply,
    normalize_note,
)
from app.services.records import PostingRecord
from app.services.toggles import ToggleSnapshot

TODAY = date(2026, 3, 15)
NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)
FUTURE = TODAY + timedelta(days=10)
PAST = TODAY - timedelta(days=1)

STUDENT = Principal(user_id="student-1", role=Role.STUDENT, is_active=True)
FACULTY = Principal(user_id="faculty-1", role=Role.FACULTY, is_active=True)
REP = Principal(user_id="rep-1", role=Role.REP, is_active=True)
OTHER_REP = Principal(user_id="rep-2", role=Role.REP, is_active=True)
ADMIN = Principal(user_id="admin-1", role=Role.ADMIN, is_active=True)
ALL_ON = ToggleSnapshot({"faculty_can_post_jobs": True, "rep_can_post_jobs": True})


def _posting(status: str = "pending", *, created_by: str | None = "rep-1", deadline: date = FUTURE, note=None):
    return PostingRecord(
        id="posting-1",
        title="Data Analyst Intern",
        company="Acme",
        industry="Technology",
        job_type="Internship",
        description="Crunch numbers.",
        deadline=deadline,
        status=status,
        created_at=NOW,
        updated_at=NOW,
        created_by=created_by,
        rejection_note=note,
    )


def test_faculty_create_goes_live_immediately() -> None:
    decision = decide(PostingAction.CREATE, FACULTY, None, today=TODAY, toggles=ALL_ON, deadline=FUTURE)

    assert decision.allowed
    assert decision.next_status == "active"
    assert decision.changes == {"status": "active", "rejection_note": None}


def test_rep_create_waits_for_moderation() -> None:
    decision = decide(PostingAction.CREATE, REP, None, today=TODAY, toggles=ALL_ON, deadline=FUTURE)

    assert decision.allowed
    assert decision.next_status == "pending"


def test_rep_create_denied_when_rep_toggle_off() -> None:
    toggles = ToggleSnapshot({"rep_can_post_jobs": False, "faculty_can_post_jobs": True})

    decision = decide(PostingAction.CREATE, REP, None, today=TODAY, toggles=toggles, deadline=FUTURE)

    assert not decision.allowed
    assert decision.reason is DenialReason.TOGGLE_DISABLED
    assert decision.message == "posting disabled for role"


def test_rep_toggle_never_affects_faculty() -> None:
    toggles = ToggleSnapshot({"rep_can_post_jobs": False, "faculty_can_post_jobs": True})

    decision = decide(PostingAction.CREATE, FACULTY, None, today=TODAY, toggles=toggles, deadline=FUTURE)

    assert decision.allowed


def test_faculty_create_denied_when_faculty_toggle_off() -> None:
    toggles = ToggleSnapshot({"faculty_can_post_jobs": False})

    decision = decide(PostingAction.CREATE, FACULTY, None, today=TODAY, toggles=toggles, deadline=FUTURE)

    assert decision.reason is DenialReason.TOGGLE_DISABLED


def test_missing_toggle_row_fails_open() -> None:
    decision = decide(PostingAction.CREATE, REP, None, today=TODAY, toggles=ToggleSnapshot(), deadline=FUTURE)

    assert decision.allowed


@pytest.mark.parametrize("actor", [STUDENT, ADMIN])
def test_roles_without_posting_rights_cannot_create(actor: Principal) -> None:
    decision = decide(PostingAction.CREATE, actor, None, today=TODAY, toggles=ALL_ON, deadline=FUTURE)

    assert decision.reason is DenialReason.ROLE_NOT_PERMITTED


def test_inactive_actor_is_denied_before_anything_else() -> None:
    inactive = replace(REP, is_active=False)
    toggles = ToggleSnapshot({"rep_can_post_jobs": False})

    decision = decide(PostingAction.CREATE, inactive, None, today=TODAY, toggles=toggles, deadline=PAST)

    assert decision.reason is DenialReason.INACTIVE


@pytest.mark.parametrize("deadline", [TODAY, PAST, None])
def test_create_requires_strictly_future_deadline(deadline: date | None) -> None:
    decision = decide(PostingAction.CREATE, FACULTY, None, today=TODAY, toggles=ALL_ON, deadline=deadline)

    assert decision.reason is DenialReason.INVALID_DATE


def test_create_without_toggle_snapshot_is_a_programming_error() -> None:
    with pytest.raises(ValueError):
        decide(PostingAction.CREATE, FACULTY, None, today=TODAY, deadline=FUTURE)


def test_approve_moves_pending_to_active_and_clears_note() -> None:
    decision = decide(PostingAction.APPROVE, ADMIN, _posting("pending"), today=TODAY)

    assert decision.allowed
    assert decision.changes == {"status": "active", "rejection_note": None}


def test_reject_keeps_trimmed_note() -> None:
    decision = decide(PostingAction.REJECT, ADMIN, _posting("pending"), today=TODAY, note="  Missing salary  ")

    assert decision.changes == {"status": "rejected", "rejection_note": "Missing salary"}


def test_reject_with_blank_note_stores_null() -> None:
    decision = decide(PostingAction.REJECT, ADMIN, _posting("pending"), today=TODAY, note="   ")

    assert decision.changes["rejection_note"] is None


def test_remove_requires_active_posting() -> None:
    allowed = decide(PostingAction.REMOVE, ADMIN, _posting("active"), today=TODAY)
    denied = decide(PostingAction.REMOVE, ADMIN, _posting("pending"), today=TODAY)

    assert allowed.changes["status"] == "removed"
    assert denied.reason is DenialReason.INVALID_TRANSITION


@pytest.mark.parametrize("status", ["active", "rejected", "removed"])
def test_approve_only_from_pending(status: str) -> None:
    decision = decide(PostingAction.APPROVE, ADMIN, _posting(status), today=TODAY)

    assert decision.reason is DenialReason.INVALID_TRANSITION


@pytest.mark.parametrize("action", [PostingAction.APPROVE, PostingAction.REJECT, PostingAction.REMOVE])
def test_moderation_is_admin_only(action: PostingAction) -> None:
    decision = decide(action, REP, _posting("pending"), today=TODAY)

    assert decision.reason is DenialReason.ROLE_NOT_PERMITTED


def test_admin_moderates_postings_whose_creator_was_deleted() -> None:
    decision = decide(PostingAction.APPROVE, ADMIN, _posting("pending", created_by=None), today=TODAY)

    assert decision.allowed


def test_edit_by_non_owner_is_denied() -> None:
    decision = decide(PostingAction.EDIT, OTHER_REP, _posting("active"), today=TODAY)

    assert decision.reason is DenialReason.NOT_OWNER


def test_orphaned_posting_has_no_owner() -> None:
    decision = decide(PostingAction.EDIT, REP, _posting("active", created_by=None), today=TODAY)

    assert decision.reason is DenialReason.NOT_OWNER


def test_edit_keeps_rejected_status_and_note() -> None:
    decision = decide(PostingAction.EDIT, REP, _posting("rejected", note="fix title"), today=TODAY)

    assert decision.allowed
    assert decision.next_status == "rejected"
    assert "status" not in decision.changes
    assert "rejection_note" not in decision.changes


def test_edit_of_removed_posting_is_denied() -> None:
    decision = decide(PostingAction.EDIT, REP, _posting("removed"), today=TODAY)

    assert decision.reason is DenialReason.INVALID_TRANSITION


def test_edit_with_past_deadline_is_denied() -> None:
    decision = decide(PostingAction.EDIT, REP, _posting("active"), today=TODAY, deadline=TODAY)

    assert decision.reason is DenialReason.INVALID_DATE


def test_resubmit_moves_rejected_to_pending_and_clears_note() -> None:
    decision = decide(PostingAction.RESUBMIT, REP, _posting("rejected", note="fix title"), today=TODAY)

    assert decision.changes == {"status": "pending", "rejection_note": None}


def test_resubmit_of_active_posting_is_denied() -> None:
    decision = decide(PostingAction.RESUBMIT, REP, _posting("active"), today=TODAY)

    assert decision.reason is DenialReason.INVALID_TRANSITION


def test_reactivate_archived_posting_with_future_deadline() -> None:
    posting = _posting("active", deadline=PAST)

    decision = decide(PostingAction.REACTIVATE, REP, posting, today=TODAY, deadline=FUTURE)

    assert decision.allowed
    assert decision.changes == {"status": "active", "deadline": FUTURE, "rejection_note": None}


def test_reactivate_requires_archived_posting() -> None:
    decision = decide(PostingAction.REACTIVATE, REP, _posting("active"), today=TODAY, deadline=FUTURE)

    assert decision.reason is DenialReason.INVALID_TRANSITION


def test_reactivate_rejects_deadline_of_today() -> None:
    posting = _posting("active", deadline=PAST)

    decision = decide(PostingAction.REACTIVATE, REP, posting, today=TODAY, deadline=TODAY)

    assert decision.reason is DenialReason.INVALID_DATE


def test_reactivate_by_admin_is_creator_scoped() -> None:
    posting = _posting("active", deadline=PAST)

    decision = decide(PostingAction.REACTIVATE, ADMIN, posting, today=TODAY, deadline=FUTURE)

    assert decision.reason is DenialReason.NOT_OWNER


def test_delete_allowed_for_owner_and_admin_only() -> None:
    posting = _posting("active")

    assert decide(PostingAction.DELETE, REP, posting, today=TODAY).allowed
    assert decide(PostingAction.DELETE, ADMIN, posting, today=TODAY).allowed
    assert decide(PostingAction.DELETE, OTHER_REP, posting, today=TODAY).reason is DenialReason.NOT_OWNER


def test_raise_if_denied_carries_reason_code() -> None:
    decision = decide(PostingAction.EDIT, OTHER_REP, _posting("active"), today=TODAY)

    with pytest.raises(PolicyDeniedError) as excinfo:
        decision.raise_if_denied()

    assert excinfo.value.reason == "not_owner"
    assert excinfo.value.status_code == 403


def test_denied_decision_without_reason_is_rejected() -> None:
    with pytest.raises(ValueError):
        Decision(allowed=False).raise_if_denied()

    Decision.allow("active").raise_if_denied()


def test_students_apply_only_to_open_postings() -> None:
    assert decide_apply(STUDENT, _posting("active"), today=TODAY).allowed
    assert decide_apply(STUDENT, _posting("active", deadline=TODAY), today=TODAY).allowed
    assert decide_apply(STUDENT, _posting("active", deadline=PAST), today=TODAY).reason is DenialReason.INVALID_TRANSITION
    assert decide_apply(STUDENT, _posting("pending"), today=TODAY).reason is DenialReason.INVALID_TRANSITION
    assert decide_apply(REP, _posting("active"), today=TODAY).reason is DenialReason.ROLE_NOT_PERMITTED


def test_application_updates_belong_to_posting_owner() -> None:
    posting = _posting("active")

    assert decide_application_update(REP, posting).allowed
    assert decide_application_update(OTHER_REP, posting).reason is DenialReason.NOT_OWNER
    assert decide_application_update(STUDENT, posting).reason is DenialReason.ROLE_NOT_PERMITTED


def test_normalize_note() -> None:
    assert normalize_note(None) is None
    assert normalize_note("  ") is None
    assert normalize_note(" ok ") == "ok"

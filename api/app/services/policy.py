"""Authorization and state-transition rules for job postings.

Every write path asks :func:`decide` (or one of the application helpers) before
touching the store. The functions here are pure: they look at the actor, the
current posting and a toggle snapshot, and either allow the action with the
exact fields to write or deny it with a machine-readable reason.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from app.core.auth import POSTING_ROLES, Principal, Role
from app.core.errors import ForbiddenError
from app.services.records import PostingRecord
from app.services.toggles import TOGGLE_KEY_BY_ROLE, ToggleSnapshot


class PostingAction(str, Enum):
    CREATE = "create"
    APPROVE = "approve"
    REJECT = "reject"
    REMOVE = "remove"
    REACTIVATE = "reactivate"
    EDIT = "edit"
    RESUBMIT = "resubmit"
    DELETE = "delete"


class DenialReason(str, Enum):
    NOT_OWNER = "not_owner"
    INACTIVE = "inactive"
    TOGGLE_DISABLED = "toggle_disabled"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_DATE = "invalid_date"
    ROLE_NOT_PERMITTED = "role_not_permitted"


ADMIN_ACTIONS = frozenset({PostingAction.APPROVE, PostingAction.REJECT, PostingAction.REMOVE})

# action -> (required current status, resulting status)
STATUS_TRANSITIONS: dict[PostingAction, tuple[str, str]] = {
    PostingAction.APPROVE: ("pending", "active"),
    PostingAction.REJECT: ("pending", "rejected"),
    PostingAction.REMOVE: ("active", "removed"),
    PostingAction.RESUBMIT: ("rejected", "pending"),
}


class PolicyDeniedError(ForbiddenError):
    def __init__(self, reason: DenialReason, message: str) -> None:
        super().__init__(message, reason=reason.value)
        self.denial = reason


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    next_status: str | None = None
    changes: dict[str, Any] = field(default_factory=dict)
    reason: DenialReason | None = None
    message: str | None = None

    @classmethod
    def allow(cls, next_status: str | None, **changes: Any) -> Decision:
        return cls(allowed=True, next_status=next_status, changes=changes)

    @classmethod
    def deny(cls, reason: DenialReason, message: str) -> Decision:
        return cls(allowed=False, reason=reason, message=message)

    def raise_if_denied(self) -> None:
        if self.allowed:
            return
        if self.reason is None:
            raise ValueError("denied decision carries no reason")
        raise PolicyDeniedError(self.reason, self.message or self.reason.value)


def normalize_note(note: str | None) -> str | None:
    if note is None:
        return None
    stripped = note.strip()
    return stripped or None


def decide(
    action: PostingAction,
    actor: Principal,
    posting: PostingRecord | None,
    *,
    today: date,
    toggles: ToggleSnapshot | None = None,
    deadline: date | None = None,
    note: str | None = None,
) -> Decision:
    if not actor.is_active:
        return Decision.deny(DenialReason.INACTIVE, "inactive account")

    if action is PostingAction.CREATE:
        return _decide_create(actor, toggles=toggles, today=today, deadline=deadline)

    if posting is None:
        raise ValueError(f"{action.value} requires an existing posting")

    if action in ADMIN_ACTIONS:
        if not actor.is_admin:
            return Decision.deny(DenialReason.ROLE_NOT_PERMITTED, f"only admins can {action.value} postings")
        return _decide_transition(action, posting, note=note)

    if action is PostingAction.DELETE:
        if actor.is_admin or actor.owns(posting.created_by):
            return Decision.allow(None)
        return Decision.deny(DenialReason.NOT_OWNER, "not owner")

    if not actor.owns(posting.created_by):
        return Decision.deny(DenialReason.NOT_OWNER, "not owner")

    if action is PostingAction.EDIT:
        return _decide_edit(posting, today=today, deadline=deadline)
    if action is PostingAction.RESUBMIT:
        return _decide_transition(action, posting)
    if action is PostingAction.REACTIVATE:
        return _decide_reactivate(posting, today=today, deadline=deadline)

    raise ValueError(f"unsupported posting action: {action}")


def _decide_create(
    actor: Principal,
    *,
    toggles: ToggleSnapshot | None,
    today: date,
    deadline: date | None,
) -> Decision:
    if actor.role not in POSTING_ROLES:
        return Decision.deny(DenialReason.ROLE_NOT_PERMITTED, f"{actor.role.value} accounts cannot create postings")

    if toggles is None:
        raise ValueError("create requires a toggle snapshot")
    if not toggles.enabled(TOGGLE_KEY_BY_ROLE[actor.role]):
        return Decision.deny(DenialReason.TOGGLE_DISABLED, "posting disabled for role")

    if deadline is None or deadline <= today:
        return Decision.deny(DenialReason.INVALID_DATE, "deadline must be in the future")

    # Faculty postings skip moderation; rep postings wait for an admin.
    next_status = "active" if actor.role is Role.FACULTY else "pending"
    return Decision.allow(next_status, status=next_status, rejection_note=None)


def _decide_transition(action: PostingAction, posting: PostingRecord, *, note: str | None = None) -> Decision:
    from_status, to_status = STATUS_TRANSITIONS[action]
    if posting.status != from_status:
        return Decision.deny(
            DenialReason.INVALID_TRANSITION,
            f"cannot {action.value} a {posting.status} posting",
        )

    rejection_note = normalize_note(note) if to_status == "rejected" else None
    return Decision.allow(to_status, status=to_status, rejection_note=rejection_note)


def _decide_edit(posting: PostingRecord, *, today: date, deadline: date | None) -> Decision:
    if posting.status == "removed":
        return Decision.deny(DenialReason.INVALID_TRANSITION, "removed postings cannot be edited")

    if deadline is not None and deadline <= today:
        return Decision.deny(DenialReason.INVALID_DATE, "deadline must be in the future")

    # Editing never changes status; a rejected posting stays rejected with its
    # note until the creator resubmits it.
    if deadline is None:
        return Decision.allow(posting.status)
    return Decision.allow(posting.status, deadline=deadline)


def _decide_reactivate(posting: PostingRecord, *, today: date, deadline: date | None) -> Decision:
    if not posting.is_archived(today):
        return Decision.deny(
            DenialReason.INVALID_TRANSITION,
            "only postings archived past their deadline can be reactivated",
        )

    if deadline is None or deadline <= today:
        return Decision.deny(DenialReason.INVALID_DATE, "new deadline must be a future date")

    return Decision.allow("active", status="active", deadline=deadline, rejection_note=None)


def decide_apply(actor: Principal, posting: PostingRecord, *, today: date) -> Decision:
    if not actor.is_active:
        return Decision.deny(DenialReason.INACTIVE, "inactive account")
    if actor.role is not Role.STUDENT:
        return Decision.deny(DenialReason.ROLE_NOT_PERMITTED, "only students can apply to jobs")
    if not posting.is_open(today):
        return Decision.deny(DenialReason.INVALID_TRANSITION, "posting is not accepting applications")
    return Decision.allow("applied")


def decide_application_update(actor: Principal, posting: PostingRecord) -> Decision:
    if not actor.is_active:
        return Decision.deny(DenialReason.INACTIVE, "inactive account")
    if actor.role not in POSTING_ROLES:
        return Decision.deny(DenialReason.ROLE_NOT_PERMITTED, "only posting owners can update applications")
    if not actor.owns(posting.created_by):
        return Decision.deny(DenialReason.NOT_OWNER, "not owner")
    return Decision.allow(None)


def require_active_admin(actor: Principal) -> None:
    if not actor.is_admin:
        raise PolicyDeniedError(DenialReason.ROLE_NOT_PERMITTED, "admin access required")
    if not actor.is_active:
        raise PolicyDeniedError(DenialReason.INACTIVE, "inactive account")

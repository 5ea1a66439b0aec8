# -*- coding: utf-8 -*-
"""Decision transaction engine for membership applications.

A decision is validated and written in one transaction: the application row is read under a row
lock, checked against the transition table, updated, and a ``ReviewAction`` row is appended.
Conflicts are returned as result values, not raised.
"""

import enum
from dataclasses import dataclass
from typing import Union

from models.application import TERMINAL_STATUSES, Application, ApplicationStatus, ReviewAction
from utils.database import now_epoch, utcnow
from utils.errors import WardenNotFoundError, WardenValidationError


class DecisionKind(str, enum.Enum):
    """Decisions staff can take. The value is what ends up in ``ReviewAction.Action``."""

    APPROVE = "approve"
    REJECT = "reject"
    PERM_REJECT = "perm_reject"
    KICK = "kick"
    NEED_INFO = "need_info"


TARGET_STATUS = {
    DecisionKind.APPROVE: ApplicationStatus.APPROVED,
    DecisionKind.REJECT: ApplicationStatus.REJECTED,
    DecisionKind.PERM_REJECT: ApplicationStatus.REJECTED,
    DecisionKind.KICK: ApplicationStatus.KICKED,
    DecisionKind.NEED_INFO: ApplicationStatus.NEEDS_INFO,
}

_REVIEWABLE = frozenset({ApplicationStatus.SUBMITTED, ApplicationStatus.NEEDS_INFO})

ALLOWED_FROM = {
    DecisionKind.APPROVE: _REVIEWABLE,
    DecisionKind.REJECT: _REVIEWABLE,
    DecisionKind.PERM_REJECT: _REVIEWABLE,
    DecisionKind.KICK: _REVIEWABLE,
    DecisionKind.NEED_INFO: frozenset({ApplicationStatus.SUBMITTED}),
}


@dataclass(frozen=True)
class Changed:
    review_action_id: int
    application_id: str
    app_code: str
    guild_id: int
    user_id: int
    kind: DecisionKind
    previous_status: ApplicationStatus
    status: ApplicationStatus
    reason: str | None = None


@dataclass(frozen=True)
class AlreadyInState:
    status: ApplicationStatus


@dataclass(frozen=True)
class TerminalConflict:
    status: ApplicationStatus


@dataclass(frozen=True)
class InvalidState:
    status: ApplicationStatus


DecisionResult = Union[Changed, AlreadyInState, TerminalConflict, InvalidState]


def parse_decision_kind(value) -> DecisionKind:
    """Accept a DecisionKind or its string value; anything else is a validation fault."""
    if isinstance(value, DecisionKind):
        return value
    try:
        return DecisionKind(str(value).strip().lower())
    except ValueError as ex:
        allowed = ", ".join(k.value for k in DecisionKind)
        raise WardenValidationError(f"Unknown decision {value!r}. Expected one of: {allowed}.") from ex


def evaluate(current: ApplicationStatus, kind: DecisionKind) -> DecisionResult | None:
    """Check a requested decision against the transition table.

    Returns the conflict result, or None when the transition may be written.
    """
    target = TARGET_STATUS[kind]
    if current == target:
        return AlreadyInState(current)
    if current in TERMINAL_STATUSES:
        return TerminalConflict(current)
    if current not in ALLOWED_FROM[kind]:
        return InvalidState(current)
    return None


def _apply(app: Application, kind: DecisionKind, moderator_id: int, reason: str | None) -> None:
    now = utcnow()
    app.Status = TARGET_STATUS[kind]
    app.UpdatedAt = now
    if app.Status in TERMINAL_STATUSES:
        app.ResolvedAt = now
        app.ResolverId = moderator_id
        app.ResolutionReason = reason
    if kind is DecisionKind.PERM_REJECT:
        app.PermanentlyRejected = True
        app.PermanentRejectAt = now


def decide(bot, application_id: str, moderator_id: int, kind, reason: str | None = None) -> DecisionResult:
    """Apply a staff decision to an application.

    :raises WardenValidationError: unknown decision kind
    :raises WardenNotFoundError: no application with this id
    :raises WardenStorageError: the transaction could not be committed; nothing was written
    """
    kind = parse_decision_kind(kind)
    if reason is not None:
        reason = reason.strip() or None

    with bot.session_scope() as session:
        app = Application.get_for_update(application_id, session)
        if app is None:
            raise WardenNotFoundError(f"Application {application_id} not found.")

        previous = ApplicationStatus(app.Status)
        conflict = evaluate(previous, kind)
        if conflict is not None:
            bot.log.debug(f"[{app.GuildId}] decision {kind.value} on {app.short_code}: {conflict}")
            return conflict

        action = ReviewAction(
            ApplicationId=app.Id,
            ModeratorId=moderator_id,
            Action=kind.value,
            Reason=reason,
            CreatedAt=now_epoch(),
        )
        session.add(action)
        _apply(app, kind, moderator_id, reason)
        session.flush()

        result = Changed(
            review_action_id=action.Id,
            application_id=app.Id,
            app_code=app.short_code,
            guild_id=app.GuildId,
            user_id=app.UserId,
            kind=kind,
            previous_status=previous,
            status=ApplicationStatus(app.Status),
            reason=reason,
        )

    bot.log.info(
        f"[{result.guild_id}] application {result.app_code} {previous.value} -> {result.status.value} "
        f"by {moderator_id}"
    )
    return result

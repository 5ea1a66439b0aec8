# -*- coding: utf-8 -*-
"""Applying a staff decision end to end and describing the outcome to staff"""

from dataclasses import dataclass
from datetime import UTC, datetime

import humanize

from models.application import TERMINAL_STATUSES, Application, ApplicationStatus, ReviewAction
from models.guild import GateGuildConfig
from utils.audit import log_action
from utils.capabilities import PERMISSION_DENIED, MembershipGateway
from utils.decision import AlreadyInState, Changed, DecisionKind, DecisionResult, TerminalConflict, decide
from utils.delivery import DeliveryResult, run_delivery
from utils.errors import WardenException, WardenNotFoundError, WardenStorageError
from utils.helpers import guild_context
from utils.strings import get_guild_language, get_string
from utils.tickets import TicketManager


@dataclass(frozen=True)
class DecisionOutcome:
    application_id: str
    result: DecisionResult
    delivery: DeliveryResult | None = None
    ticket_closed: bool = False
    audit_id: int | None = None


async def apply_decision(
    bot,
    membership: MembershipGateway,
    tickets: TicketManager | None,
    guild_id: int,
    guild_name: str,
    application_id: str,
    moderator_id: int,
    kind,
    reason: str | None = None,
) -> DecisionOutcome:
    """Commit a decision, then run its side effects and record it in the action log.

    Side effects only run when the decision actually changed the application. A terminal
    decision also closes the applicant's open modmail ticket, if any.
    """
    with bot.session_scope() as session:
        app = Application.get_by_id(application_id, session)
        if app is None or app.GuildId != guild_id:
            raise WardenNotFoundError(f"Application {application_id} not found.")

    result = decide(bot, application_id, moderator_id, kind, reason)
    if not isinstance(result, Changed):
        return DecisionOutcome(application_id, result)

    with bot.session_scope() as session:
        config = GateGuildConfig.get(guild_id, session)
        member_role_id = config.MemberRoleId if config is not None else None
        lang = get_guild_language(guild_id, session)

    delivery = await run_delivery(bot, membership, result, guild_name, member_role_id, lang)

    ticket_closed = False
    if tickets is not None and result.status in TERMINAL_STATUSES:
        try:
            closed = await tickets.close_for_user(
                guild_id,
                result.user_id,
                actor_id=moderator_id,
                reason=f"application {result.app_code}: {result.kind.value}",
                notify_user=False,
            )
            ticket_closed = closed is not None and not closed.already_closed
        except WardenException as ex:
            bot.log.warning(f"{guild_context(guild_id, guild_name)} could not close modmail of {result.user_id}: {ex}")

    audit_id = log_action(
        bot,
        guild_id,
        result.kind.value,
        actor_id=moderator_id,
        subject_id=result.user_id,
        app_id=result.application_id,
        app_code=result.app_code,
        reason=result.reason,
        meta={
            "reviewActionId": result.review_action_id,
            "from": result.previous_status.value,
            "to": result.status.value,
            "modmailClosed": ticket_closed,
            **delivery.as_meta(),
        },
    )
    return DecisionOutcome(application_id, result, delivery, ticket_closed, audit_id)


def _status_label(lang: str, status: ApplicationStatus) -> str:
    return get_string(lang, f"review.status.{status.value}")


def _delivery_lines(lang: str, kind: DecisionKind, delivery: DeliveryResult) -> list[str]:
    lines = []
    if delivery.role_requested:
        if delivery.role_applied:
            lines.append(get_string(lang, "review.role_applied"))
        elif delivery.role_error is not None and delivery.role_error.code == PERMISSION_DENIED:
            lines.append(get_string(lang, "review.role_permission"))
        elif delivery.role_error is not None:
            lines.append(get_string(lang, "review.role_failed", code=delivery.role_error.code))
        elif not delivery.member_found:
            lines.append(get_string(lang, "review.role_no_member"))

    lines.append(get_string(lang, "review.dm_sent" if delivery.dm_delivered else "review.dm_failed"))

    if kind is DecisionKind.KICK:
        if delivery.kicked:
            lines.append(get_string(lang, "review.kicked"))
        elif delivery.kick_error is not None and delivery.kick_error.code == PERMISSION_DENIED:
            lines.append(get_string(lang, "review.kick_permission"))
        elif delivery.kick_error is not None:
            lines.append(get_string(lang, "review.kick_failed", code=delivery.kick_error.code))
    return lines


def describe_outcome(bot, outcome: DecisionOutcome, lang: str = "en") -> str:
    """Staff-facing summary, e.g. "Application `1A2B3C` was already approved by @mod (today)"."""
    result = outcome.result

    if isinstance(result, Changed):
        lines = [get_string(lang, "review.changed", code=result.app_code, status=_status_label(lang, result.status))]
        if outcome.delivery is not None:
            lines.extend(_delivery_lines(lang, result.kind, outcome.delivery))
        if outcome.ticket_closed:
            lines.append(get_string(lang, "review.ticket_closed"))
        return "\n".join(lines)

    with bot.session_scope() as session:
        app = Application.get_by_id(outcome.application_id, session)
        code = app.short_code if app is not None else outcome.application_id
        latest = ReviewAction.get_latest(outcome.application_id, session)
        moderator = latest.ModeratorId if latest is not None else None
        decided_at = latest.CreatedAt if latest is not None else None

    status = _status_label(lang, result.status)
    if isinstance(result, (AlreadyInState, TerminalConflict)):
        key = "already" if isinstance(result, AlreadyInState) else "terminal"
        if moderator is None:
            return get_string(lang, f"review.{key}_unknown", code=code, status=status)
        when = humanize.naturaldate(datetime.fromtimestamp(decided_at, UTC))
        return get_string(lang, f"review.{key}", code=code, status=status, moderator=moderator, when=when)

    return get_string(lang, "review.invalid", code=code, status=status)


def describe_storage_error(error: WardenStorageError, lang: str = "en") -> str:
    return get_string(lang, "review.storage_error", correlation_id=error.correlation_id)

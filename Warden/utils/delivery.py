# -*- coding: utf-8 -*-
"""Side effects of a committed decision: member role, applicant DM and kick.

Every step is best-effort and independent of the others. The decision itself is already durable
when this runs, so failures are recorded on the result instead of being raised. Missing
permissions are only logged. Every other platform error is reported to the operators.
"""

from dataclasses import dataclass

from utils.capabilities import DeliveryError, MemberHandle, MembershipGateway
from utils.decision import Changed, DecisionKind
from utils.helpers import error_context, guild_context, notify_error
from utils.strings import get_string


# code recorded for failures that did not come with a platform error code
UNEXPECTED_ERROR = -1


@dataclass(frozen=True)
class Failure:
    code: int
    message: str


@dataclass(frozen=True)
class RoleOutcome:
    member_found: bool
    role_applied: bool
    error: Failure | None = None


@dataclass(frozen=True)
class DeliveryResult:
    member_found: bool = False
    role_requested: bool = False
    role_applied: bool = False
    role_error: Failure | None = None
    dm_delivered: bool = False
    kicked: bool = False
    kick_error: Failure | None = None

    def as_meta(self) -> dict:
        """Compact form stored with the audit entry."""
        meta = {"memberFound": self.member_found, "roleApplied": self.role_applied, "dmDelivered": self.dm_delivered}
        if self.role_error is not None:
            meta["roleError"] = {"code": self.role_error.code, "message": self.role_error.message}
        if self.kick_error is not None:
            meta["kickError"] = {"code": self.kick_error.code, "message": self.kick_error.message}
        if self.kicked:
            meta["kicked"] = True
        return meta


def build_notification(kind: DecisionKind, guild_name: str, reason: str | None = None, lang: str = "en") -> str:
    """Render the DM an applicant receives for a decision."""
    if kind is DecisionKind.APPROVE:
        parts = [get_string(lang, "delivery.approve.body", guild=guild_name)]
        if reason:
            parts.append(get_string(lang, "delivery.approve.note", reason=reason))
        parts.append(get_string(lang, "delivery.approve.closing"))
        return "\n\n".join(parts)

    if kind is DecisionKind.PERM_REJECT:
        return get_string(lang, "delivery.perm_reject.body", guild=guild_name)

    parts = [get_string(lang, f"delivery.{kind.value}.body", guild=guild_name)]
    if reason:
        parts.append(get_string(lang, f"delivery.{kind.value}.reason", reason=reason.rstrip(".")))
    return "\n\n".join(parts)


async def _report(bot, context: str, ex: Exception) -> Failure:
    """Turn a failed platform call into a recorded failure.

    Missing permissions stay in the log. Every other error, including ones that are not
    ``DeliveryError`` at all (timeouts, dropped connections), is reported to the operators.
    """
    if not isinstance(ex, DeliveryError):
        bot.log.error(f"{context}: unexpected {type(ex).__name__}: {ex}", exc_info=True)
        await notify_error(bot, context, ex)
        return Failure(UNEXPECTED_ERROR, str(ex) or type(ex).__name__)
    if ex.is_permission_denied:
        bot.log.warning(f"{context}: missing permissions ({ex.message})")
    else:
        bot.log.error(f"{context}: {ex}")
        await notify_error(bot, context, ex)
    return Failure(ex.code, ex.message)


async def fetch_member(bot, membership: MembershipGateway, guild_id: int, user_id: int) -> MemberHandle | None:
    """Look up the applicant. A member who left, or a lookup that failed, is not an error."""
    try:
        member = await membership.fetch_member(guild_id, user_id)
    except Exception as ex:
        bot.log.warning(f"{guild_context(guild_id)} could not look up member {user_id}: {ex!r}")
        return None
    if member is None:
        bot.log.info(f"{guild_context(guild_id)} member {user_id} is no longer in the guild")
    return member


async def reconcile_role(
    bot, member: MemberHandle | None, guild_id: int, role_id: int, reason: str | None = None
) -> RoleOutcome:
    """Make sure the member holds *role_id*."""
    if member is None:
        return RoleOutcome(member_found=False, role_applied=False)
    if member.has_role(role_id):
        return RoleOutcome(member_found=True, role_applied=True)

    try:
        await member.grant_role(role_id, reason=reason)
    except Exception as ex:
        failure = await _report(bot, f"{guild_context(guild_id)} grant role {role_id} to {member.id}", ex)
        return RoleOutcome(member_found=True, role_applied=False, error=failure)
    return RoleOutcome(member_found=True, role_applied=True)

    try:
        await member.grant_role(role_id, reason=reason)
    except DeliveryError as ex:
        await _report(bot, f"{guild_context(guild_id)} grant role {role_id} to {member.id}", ex)
        return RoleOutcome(member_found=True, role_applied=False, error=Failure(ex.code, ex.message))
    return RoleOutcome(member_found=True, role_applied=True)


async def deliver_notification(bot, membership: MembershipGateway, user_id: int, content: str) -> bool:
    """DM the applicant. Returns whether it arrived; never raises."""
    try:
        await membership.send_direct_message(user_id, content)
    except DeliveryError as ex:
        bot.log.warning(f"could not DM user {user_id}, DMs are likely disabled: {ex}")
        return False
    except Exception as ex:
        bot.log.error(f"unexpected error while sending DM to {user_id}: {ex}", exc_info=True)
        await notify_error(bot, f"DM to {user_id}", ex)
        return False
    return True


async def run_delivery(
    bot,
    membership: MembershipGateway,
    changed: Changed,
    guild_name: str,
    member_role_id: int | None = None,
    lang: str = "en",
) -> DeliveryResult:
    """Carry out the side effects that follow a committed decision."""
    ctx = error_context(changed.guild_id, guild_name, None, changed.kind.value)
    audit_reason = f"application {changed.app_code}: {changed.kind.value}"

    member = None
    role = RoleOutcome(member_found=False, role_applied=False)
    needs_member = (changed.kind is DecisionKind.APPROVE and member_role_id) or changed.kind is DecisionKind.KICK
    if needs_member:
        member = await fetch_member(bot, membership, changed.guild_id, changed.user_id)
        role = RoleOutcome(member_found=member is not None, role_applied=False)

    if changed.kind is DecisionKind.APPROVE and member_role_id:
        role = await reconcile_role(bot, member, changed.guild_id, member_role_id, reason=audit_reason)

    # the DM has to go out before a kick, afterwards the user shares no guild with the bot
    content = build_notification(changed.kind, guild_name, changed.reason, lang)
    dm_delivered = await deliver_notification(bot, membership, changed.user_id, content)

    kicked = False
    kick_error = None
    if changed.kind is DecisionKind.KICK and member is not None:
        try:
            await member.kick(reason=changed.reason or audit_reason)
            kicked = True
        except Exception as ex:
            kick_error = await _report(bot, f"{ctx} kick {changed.user_id}", ex)

    result = DeliveryResult(
        member_found=role.member_found,
        role_requested=bool(changed.kind is DecisionKind.APPROVE and member_role_id),
        role_applied=role.role_applied,
        role_error=role.error,
        dm_delivered=dm_delivered,
        kicked=kicked,
        kick_error=kick_error,
    )
    bot.log.debug(f"{ctx} delivery for {changed.app_code}: {result}")
    return result

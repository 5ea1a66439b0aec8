# -*- coding: utf-8 -*-
"""Audit log writer for review decisions and modmail transitions"""

import json

from models.audit import ActionLog
from utils.database import now_epoch
from utils.errors import WardenInfraException
from utils.helpers import guild_context

KNOWN_ACTIONS = frozenset(
    {
        "app_submitted",
        "approve",
        "reject",
        "perm_reject",
        "kick",
        "need_info",
        "modmail_open",
        "modmail_close",
        "modmail_orphan_cleanup",
        "modmail_transcript_fail",
    }
)


def log_action(
    bot,
    guild_id: int,
    action: str,
    *,
    actor_id: int | None = None,
    subject_id: int | None = None,
    app_id: str | None = None,
    app_code: str | None = None,
    reason: str | None = None,
    meta: dict | None = None,
) -> int | None:
    """Append one entry to the action log and mirror it as a JSON log line.

    The entry is written in its own transaction after the operation it describes has committed.
    A failing write is logged and reported as ``None``; it never undoes or aborts the caller.
    """
    if action not in KNOWN_ACTIONS:
        bot.log.warning(f"{guild_context(guild_id)} recording unregistered audit action {action!r}")

    created_at = now_epoch()
    meta_json = json.dumps(meta, sort_keys=True, default=str) if meta else None

    try:
        with bot.session_scope() as session:
            entry = ActionLog(
                GuildId=guild_id,
                AppId=app_id,
                AppCode=app_code,
                ActorId=actor_id,
                SubjectId=subject_id,
                Action=action,
                Reason=reason,
                MetaJson=meta_json,
                CreatedAt=created_at,
            )
            session.add(entry)
            session.flush()
            entry_id = entry.Id
    except WardenInfraException as ex:
        bot.log.error(f"{guild_context(guild_id)} failed to write audit entry {action}: {ex}")
        return None

    bot.log.info(
        json.dumps(
            {
                "audit": action,
                "guild_id": guild_id,
                "actor_id": actor_id,
                "subject_id": subject_id,
                "app_code": app_code,
                "reason": reason,
                "meta": meta or {},
                "created_at": created_at,
            },
            default=str,
        )
    )
    return entry_id

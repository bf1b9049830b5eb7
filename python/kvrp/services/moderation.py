"""Moderation panel operations.

Everything here except is_muted requires an admin session. The admin
password gate itself lives in the front end.
"""

import asyncio
from dataclasses import dataclass

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase, BackendError
from kvrp.backend.types import eq
from kvrp.config import get_settings
from kvrp.errors import InvalidRequestError, SyncErrorCode
from kvrp.logging import get_logger
from kvrp.schemas.chat import ChatMessage
from kvrp.schemas.social import AdminMessage, MutedUser, Report
from kvrp.services.calls import commit, fetch
from kvrp.services.reports import require_admin
from kvrp.session import Session
from kvrp.sync.loader import FeedSource, SnapshotLoader

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModerationOverview:
    """Everything the moderation panel lists, newest first."""

    reports: list[Report]
    public_messages: list[ChatMessage]
    private_messages: list[ChatMessage]
    admin_messages: list[AdminMessage]


async def is_muted(backend: BackendClientBase, username: str) -> bool:
    """Whether `username` is muted.

    Fails open: a failed lookup reads as not muted, same as no row.
    """
    try:
        count = await asyncio.wait_for(
            backend.count(tables.MUTED_USERS, eq("username", username)),
            timeout=get_settings().request_timeout_s,
        )
    except (BackendError, asyncio.TimeoutError) as e:
        logger.info("mute_check_failed_open", error=type(e).__name__)
        return False
    return count > 0


async def mute_user(
    backend: BackendClientBase, session: Session, username: str, reason: str | None = None
) -> MutedUser:
    """Mute a user. Muting an already muted user returns the existing row."""
    require_admin(session)
    username = username.strip()
    if not username:
        raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, "Username is required")

    existing = await fetch(
        backend.query(tables.MUTED_USERS, eq("username", username)), operation="mute_user"
    )
    if existing:
        return MutedUser.model_validate(existing[0])

    row = await commit(
        backend.insert(
            tables.MUTED_USERS,
            {"username": username, "muted_by": session.username, "reason": reason or None},
        ),
        operation="mute_user",
        notice="Failed to mute user",
    )
    logger.info("user_muted", row_id=row.get("id"))
    return MutedUser.model_validate(row)


async def unmute_user(backend: BackendClientBase, session: Session, username: str) -> bool:
    """Lift a mute. Returns False if the user was not muted."""
    require_admin(session)
    removed = await commit(
        backend.delete_where(tables.MUTED_USERS, eq("username", username)),
        operation="unmute_user",
        notice="Failed to unmute user",
    )
    logger.info("user_unmuted", removed=len(removed))
    return bool(removed)


async def muted_users(backend: BackendClientBase, session: Session) -> list[MutedUser]:
    require_admin(session)
    loader = SnapshotLoader(backend, timeout_s=get_settings().request_timeout_s)
    return await loader.load(
        FeedSource("muted_users", tables.MUTED_USERS, MutedUser, ascending=False)
    )


async def send_admin_message(
    backend: BackendClientBase, session: Session, guest_name: str, message: str
) -> AdminMessage:
    """Write an admin message into a user's admin conversation."""
    require_admin(session)
    message = message.strip()
    if not guest_name or not message:
        raise InvalidRequestError(
            SyncErrorCode.E_INVALID_REQUEST, "Recipient and message are required"
        )

    row = await commit(
        backend.insert(
            tables.ADMIN_MESSAGES,
            {"guest_name": guest_name, "message": message, "sender_type": "admin"},
        ),
        operation="send_admin_message",
        notice="Failed to send message",
    )
    logger.info("admin_message_sent", row_id=row.get("id"))
    return AdminMessage.model_validate(row)


async def moderation_overview(backend: BackendClientBase, session: Session) -> ModerationOverview:
    """Load reports and all chat traffic for the moderation panel.

    Raises:
        ForbiddenError: If the session is not an admin.
        LoadFailure: If any of the reads fails.
    """
    require_admin(session)
    loader = SnapshotLoader(backend, timeout_s=get_settings().request_timeout_s)
    reports, public, private, admin = await asyncio.gather(
        loader.load(FeedSource("admin_reports", tables.REPORTS, Report, ascending=False)),
        loader.load(
            FeedSource("admin_public_chat", tables.PUBLIC_CHAT, ChatMessage, ascending=False)
        ),
        loader.load(
            FeedSource("admin_private_chats", tables.PRIVATE_CHATS, ChatMessage, ascending=False)
        ),
        loader.load(
            FeedSource("admin_messages", tables.ADMIN_MESSAGES, AdminMessage, ascending=False)
        ),
    )
    return ModerationOverview(
        reports=reports,
        public_messages=public,
        private_messages=private,
        admin_messages=admin,
    )

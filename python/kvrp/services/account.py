"""Account housekeeping for the session user."""

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase
from kvrp.backend.types import either_filter, eq
from kvrp.logging import get_logger
from kvrp.services.calls import commit
from kvrp.session import Session

logger = get_logger(__name__)


async def clear_chat_history(backend: BackendClientBase, session: Session) -> int:
    """Delete the user's admin conversation and every private chat they are part of.

    Public chat is shared history and stays.

    Returns:
        Number of rows deleted.

    Raises:
        MutationFailure: If either delete fails. Rows already deleted stay deleted.
    """
    me = session.username
    admin = await commit(
        backend.delete_where(tables.ADMIN_MESSAGES, eq("guest_name", me)),
        operation="clear_chat_history",
        notice="Failed to clear chat history",
    )
    private = await commit(
        backend.delete_where(
            tables.PRIVATE_CHATS, either_filter("sender_name", "receiver_name", me)
        ),
        operation="clear_chat_history",
        notice="Failed to clear chat history",
    )
    removed = len(admin) + len(private)
    logger.info("chat_history_cleared", removed=removed)
    return removed

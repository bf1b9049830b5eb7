"""Test data factories for kvrp tests.

Plain helpers that build backend row dicts and change events. Rows written
through FakeBackend get their id and timestamp from the backend; these
helpers are for tests that need exact control over both.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from kvrp.backend import tables
from kvrp.backend.types import ChangeEvent, ChangeOp
from kvrp.schemas.chat import ChatMessage
from kvrp.schemas.posts import Post

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def at(seconds: float) -> datetime:
    """A point in time `seconds` after T0."""
    return T0 + timedelta(seconds=seconds)


def chat_row(
    row_id: str | int,
    *,
    created: float = 0,
    sender: str = "ann",
    message: str = "hi",
    receiver: str | None = None,
    reply_to: str | None = None,
    reactions: dict[str, list[str]] | None = None,
) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": str(row_id),
        "timestamp": at(created).isoformat(),
        "sender_name": sender,
        "message": message,
        "reply_to_id": reply_to,
        "reactions": reactions or {},
    }
    if receiver is not None:
        row["receiver_name"] = receiver
    return row


def chat_message(row_id: str | int, **kwargs: Any) -> ChatMessage:
    return ChatMessage.model_validate(chat_row(row_id, **kwargs))


def post_row(
    row_id: str | int,
    *,
    created: float = 0,
    author: str = "ann",
    title: str = "Title",
    content: str = "Body",
    likes: int = 0,
    dislikes: int = 0,
    image_url: str | None = None,
) -> dict[str, Any]:
    return {
        "id": str(row_id),
        "timestamp": at(created).isoformat(),
        "author_name": author,
        "title": title,
        "content": content,
        "likes": likes,
        "dislikes": dislikes,
        "image_url": image_url,
    }


def post(row_id: str | int, **kwargs: Any) -> Post:
    return Post.model_validate(post_row(row_id, **kwargs))


def insert_event(
    row: dict[str, Any],
    *,
    commit: float | None = None,
    collection: str = tables.PUBLIC_CHAT,
) -> ChangeEvent:
    return ChangeEvent(
        op=ChangeOp.INSERT,
        collection=collection,
        record=dict(row),
        commit_timestamp=at(commit) if commit is not None else None,
    )


def update_event(
    row: dict[str, Any],
    *,
    commit: float | None = None,
    collection: str = tables.PUBLIC_CHAT,
) -> ChangeEvent:
    return ChangeEvent(
        op=ChangeOp.UPDATE,
        collection=collection,
        record=dict(row),
        old={"id": row["id"]},
        commit_timestamp=at(commit) if commit is not None else None,
    )


def delete_event(
    row_id: str | int,
    *,
    commit: float | None = None,
    collection: str = tables.PUBLIC_CHAT,
) -> ChangeEvent:
    return ChangeEvent(
        op=ChangeOp.DELETE,
        collection=collection,
        old={"id": str(row_id)},
        commit_timestamp=at(commit) if commit is not None else None,
    )

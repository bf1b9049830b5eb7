"""Chat message schemas for the public_chat and private_chats tables.

Reaction maps are stored as {emoji: [author, ...]}. On the client each list is
de-duplicated (an author reacts at most once per emoji) and emojis with no
authors are dropped, so two maps that differ only in duplicates compare equal.
"""

from pydantic import Field, field_validator

from kvrp.schemas.base import Row

ReactionMap = dict[str, tuple[str, ...]]


def normalize_reactions(raw: object) -> ReactionMap:
    """Normalize a raw reaction payload into a de-duplicated map.

    Accepts None, or a mapping of emoji to a list/tuple/set of author names.
    Author order is first-seen order.
    """
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ValueError("reactions must be a mapping of emoji to author names")

    normalized: ReactionMap = {}
    for emoji, authors in raw.items():
        if authors is None:
            continue
        if isinstance(authors, str):
            authors = [authors]
        seen: dict[str, None] = {}
        for author in authors:
            if author:
                seen.setdefault(str(author), None)
        if seen:
            normalized[str(emoji)] = tuple(seen)
    return normalized


def reactions_payload(reactions: ReactionMap) -> dict[str, list[str]]:
    """Serialize a reaction map into the JSON shape the table stores."""
    return {emoji: list(authors) for emoji, authors in reactions.items() if authors}


class ChatMessage(Row):
    """A public or private chat message.

    `message` is the raw body including any trailing attachment markers;
    use kvrp.media.parse_body to split it.
    """

    sender_name: str
    message: str
    receiver_name: str | None = None
    reply_to_id: str | None = None
    reactions: ReactionMap = Field(default_factory=dict)

    @field_validator("reactions", mode="before")
    @classmethod
    def _normalize_reactions(cls, value: object) -> ReactionMap:
        return normalize_reactions(value)

    @field_validator("reply_to_id", mode="before")
    @classmethod
    def _coerce_reply_id(cls, value: object) -> str | None:
        if value is None or value == "":
            return None
        return str(value)

    @property
    def author(self) -> str:
        return self.sender_name

    def has_reacted(self, emoji: str, author: str) -> bool:
        return author in self.reactions.get(emoji, ())

"""View models for feeds.

Pure functions of a reconciled sequence and the current session. Nothing
here performs I/O or mutates its inputs.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from kvrp.media import Attachment, AttachmentKind, parse_body
from kvrp.schemas.chat import ChatMessage
from kvrp.schemas.posts import LikeState, Post
from kvrp.session import Session

SNIPPET_CHARS = 80


@dataclass(frozen=True)
class ReplyQuote:
    id: str
    author: str
    snippet: str


@dataclass(frozen=True)
class ReactionTally:
    emoji: str
    count: int
    mine: bool
    authors: tuple[str, ...]


@dataclass(frozen=True)
class MessageView:
    id: str
    author: str
    text: str
    attachments: tuple[Attachment, ...]
    reply: ReplyQuote | None
    reactions: tuple[ReactionTally, ...]
    time_label: str
    created_at: datetime
    is_own: bool

    @property
    def image_url(self) -> str | None:
        return next((a.url for a in self.attachments if a.kind is AttachmentKind.IMAGE), None)

    @property
    def voice_url(self) -> str | None:
        return next((a.url for a in self.attachments if a.kind is AttachmentKind.VOICE), None)


@dataclass(frozen=True)
class PostView:
    id: str
    author: str
    title: str
    content: str
    likes: int
    dislikes: int
    image_url: str | None
    liked: bool
    disliked: bool
    date_label: str
    created_at: datetime
    is_own: bool


def format_time(value: datetime) -> str:
    """Locale time of day in the local timezone."""
    return value.astimezone().strftime("%X")


def format_date(value: datetime) -> str:
    """Locale date in the local timezone."""
    return value.astimezone().strftime("%x")


def snippet(body: str, limit: int = SNIPPET_CHARS) -> str:
    """Short preview of a chat body for reply quotes."""
    text, attachments = parse_body(body)
    if not text:
        return " ".join(f"[{a.kind.value.lower()}]" for a in attachments)
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def tally_reactions(message: ChatMessage, username: str) -> tuple[ReactionTally, ...]:
    """Group reactions by emoji in stored order, flagging the user's own."""
    return tuple(
        ReactionTally(emoji=emoji, count=len(authors), mine=username in authors, authors=authors)
        for emoji, authors in message.reactions.items()
        if authors
    )


def present_message(
    message: ChatMessage,
    lookup: Callable[[str | None], ChatMessage | None],
    session: Session,
) -> MessageView:
    """Build the view model for one message.

    `lookup` resolves reply targets; a missing target renders no quote.
    """
    text, attachments = parse_body(message.message)

    reply = None
    target = lookup(message.reply_to_id) if message.reply_to_id else None
    if target is not None:
        reply = ReplyQuote(id=target.id, author=target.author, snippet=snippet(target.message))

    return MessageView(
        id=message.id,
        author=message.author,
        text=text,
        attachments=tuple(attachments),
        reply=reply,
        reactions=tally_reactions(message, session.username),
        time_label=format_time(message.created_at),
        created_at=message.created_at,
        is_own=session.is_me(message.author),
    )


def present_messages(messages: Iterable[ChatMessage], session: Session) -> list[MessageView]:
    """Build view models for a whole chat sequence, resolving replies within it."""
    sequence = list(messages)
    by_id = {m.id: m for m in sequence}
    return [present_message(m, by_id.get, session) for m in sequence]


def present_post(post: Post, vote: LikeState, session: Session) -> PostView:
    return PostView(
        id=post.id,
        author=post.author,
        title=post.title,
        content=post.content,
        likes=post.likes,
        dislikes=post.dislikes,
        image_url=post.image_url,
        liked=vote is LikeState.LIKE,
        disliked=vote is LikeState.DISLIKE,
        date_label=format_date(post.created_at),
        created_at=post.created_at,
        is_own=session.is_me(post.author),
    )


def present_posts(
    posts: Iterable[Post],
    votes: Mapping[str, LikeState],
    session: Session,
) -> list[PostView]:
    """Build view models for posts. `votes` maps post id to the user's vote."""
    return [present_post(p, votes.get(p.id, LikeState.NONE), session) for p in posts]

"""Mutation dispatch for live feeds.

Every mutation follows the same steps:
1. Validate locally (no I/O on invalid input)
2. Upload attachments, if any (an upload failure aborts the whole send)
3. Write to the backend

Local state is never touched here. The feed's listener receives the
backend's echo of the write and the reconciler applies it like any other
change. Failures raise, so the caller keeps the user's input.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase, BackendError
from kvrp.backend.types import and_, eq
from kvrp.config import Settings
from kvrp.errors import (
    ForbiddenError,
    InvalidRequestError,
    MutationFailure,
    NotFoundError,
    SyncErrorCode,
    UploadFailure,
)
from kvrp.logging import get_logger
from kvrp.media import Attachment, AttachmentKind, encode_body
from kvrp.schemas.base import Row
from kvrp.schemas.chat import ChatMessage, normalize_reactions, reactions_payload
from kvrp.schemas.posts import LikeState, Post
from kvrp.session import Session
from kvrp.storage.client import StorageClientBase, StorageError
from kvrp.storage.paths import build_object_name, get_file_extension, guess_content_type
from kvrp.sync.loader import FeedSource
from kvrp.sync.reconciler import Reconciler

logger = get_logger(__name__)

T = TypeVar("T")

RowFactory = Callable[[Session, str, str | None], dict[str, Any]]
MuteCheck = Callable[[str], Awaitable[bool]]

VOICE_CONTENT_TYPE = "audio/webm"


@dataclass(frozen=True)
class ImageUpload:
    """An image picked for upload."""

    data: bytes
    filename: str
    content_type: str | None = None

    @property
    def extension(self) -> str:
        return get_file_extension(self.filename)


@dataclass(frozen=True)
class VoiceClip:
    """A finished voice recording."""

    data: bytes
    duration_s: float
    content_type: str = VOICE_CONTENT_TYPE


@dataclass(frozen=True)
class Limits:
    """Client-side limits checked before any I/O."""

    max_body_chars: int = 500
    max_image_bytes: int = 5 * 1024 * 1024
    max_voice_seconds: float = 30.0
    timeout_s: float = 15.0

    @classmethod
    def from_settings(cls, settings: Settings, *, max_body_chars: int | None = None) -> "Limits":
        """Limits for a chat feed, or for posts when `max_body_chars` is given."""
        return cls(
            max_body_chars=max_body_chars or settings.max_chat_chars,
            max_image_bytes=settings.max_image_bytes,
            max_voice_seconds=float(settings.max_voice_seconds),
            timeout_s=settings.request_timeout_s,
        )


def public_chat_row(session: Session, body: str, reply_to: str | None) -> dict[str, Any]:
    return {"message": body, "sender_name": session.username, "reply_to_id": reply_to}


def private_chat_row(receiver: str) -> RowFactory:
    def build(session: Session, body: str, reply_to: str | None) -> dict[str, Any]:
        return {
            "message": body,
            "sender_name": session.username,
            "receiver_name": receiver,
            "reply_to_id": reply_to,
        }

    return build


async def _bounded(awaitable: Awaitable[T], timeout_s: float) -> T:
    return await asyncio.wait_for(awaitable, timeout=timeout_s)


async def upload_image(
    storage: StorageClientBase,
    bucket: str,
    image: ImageUpload,
    limits: Limits,
) -> str:
    """Validate and upload an image, returning its public URL.

    Raises:
        InvalidRequestError: If the file is too large or has no extension.
        UploadFailure: If the upload fails.
    """
    if len(image.data) > limits.max_image_bytes:
        raise InvalidRequestError(
            SyncErrorCode.E_FILE_TOO_LARGE,
            f"Image must be at most {limits.max_image_bytes // (1024 * 1024)} MB",
        )
    try:
        ext = image.extension
    except ValueError as e:
        raise InvalidRequestError(
            SyncErrorCode.E_INVALID_REQUEST, "Image needs a file extension"
        ) from e

    name = build_object_name(ext)
    content_type = image.content_type or guess_content_type(ext)
    return await _upload(storage, bucket, name, image.data, content_type, limits)


async def _upload(
    storage: StorageClientBase,
    bucket: str,
    name: str,
    data: bytes,
    content_type: str,
    limits: Limits,
) -> str:
    try:
        upload = storage.upload_blob(bucket, name, data, content_type)
        return await _bounded(upload, limits.timeout_s)
    except StorageError as e:
        logger.warning("attachment_upload_failed", bucket=bucket, error_code=e.code)
        raise UploadFailure() from e
    except asyncio.TimeoutError as e:
        logger.warning("attachment_upload_failed", bucket=bucket, error_code="E_TIMEOUT")
        raise UploadFailure() from e


class MutationDispatcher:
    """Writes on behalf of one feed.

    `reconciler` is the owning feed's sequence; it is only read, to find the
    current value of a record before a toggle.
    """

    def __init__(
        self,
        backend: BackendClientBase,
        storage: StorageClientBase,
        session: Session,
        source: FeedSource,
        reconciler: Reconciler,
        *,
        bucket: str = "post-images",
        limits: Limits | None = None,
        row_factory: RowFactory = public_chat_row,
        mute_check: MuteCheck | None = None,
    ):
        self._backend = backend
        self._storage = storage
        self._session = session
        self._source = source
        self._reconciler = reconciler
        self._bucket = bucket
        self._limits = limits or Limits()
        self._row_factory = row_factory
        self._mute_check = mute_check

    async def send(
        self,
        body: str,
        image: ImageUpload | None = None,
        voice: VoiceClip | None = None,
        reply_to: str | None = None,
    ) -> ChatMessage:
        """Send a chat message with optional attachments.

        Raises:
            InvalidRequestError: Empty message, body too long, oversized image
                or over-long recording.
            ForbiddenError: The sender is muted.
            UploadFailure: An attachment upload failed; nothing was written.
            MutationFailure: The row write failed.
        """
        text = body.strip()
        self._validate_send(text, image, voice)

        if self._mute_check is not None and await self._mute_check(self._session.username):
            logger.info("send_blocked_muted", feed=self._source.name)
            raise ForbiddenError(SyncErrorCode.E_MUTED, "You are muted and cannot send messages")

        attachments: list[Attachment] = []
        if image is not None:
            url = await upload_image(self._storage, self._bucket, image, self._limits)
            attachments.append(Attachment(AttachmentKind.IMAGE, url))
        if voice is not None:
            url = await _upload(
                self._storage,
                self._bucket,
                build_object_name("webm", voice=True),
                voice.data,
                voice.content_type,
                self._limits,
            )
            attachments.append(Attachment(AttachmentKind.VOICE, url))

        row = self._row_factory(self._session, encode_body(text, attachments), reply_to)
        stored = await self._write(self._backend.insert(self._source.collection, row))

        logger.info(
            "message_sent",
            feed=self._source.name,
            row_id=stored.get("id"),
            body_length=len(text),
            attachment_count=len(attachments),
        )
        return ChatMessage.model_validate(stored)

    def _validate_send(self, text: str, image: ImageUpload | None, voice: VoiceClip | None) -> None:
        if not text and image is None and voice is None:
            raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, "Message is empty")
        if len(text) > self._limits.max_body_chars:
            raise InvalidRequestError(
                SyncErrorCode.E_BODY_TOO_LONG,
                f"Message must be at most {self._limits.max_body_chars} characters",
            )
        if voice is not None and voice.duration_s > self._limits.max_voice_seconds:
            raise InvalidRequestError(
                SyncErrorCode.E_RECORDING_TOO_LONG,
                f"Recording must be at most {self._limits.max_voice_seconds:g} seconds",
            )
        if image is not None and len(image.data) > self._limits.max_image_bytes:
            raise InvalidRequestError(
                SyncErrorCode.E_FILE_TOO_LARGE,
                f"Image must be at most {self._limits.max_image_bytes // (1024 * 1024)} MB",
            )
        try:
            encode_body(text)
        except ValueError as e:
            raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, str(e)) from e

    async def react(self, record_id: str, emoji: str) -> ChatMessage:
        """Toggle the current user's reaction on a message.

        The whole reaction map is written back; the echo replaces the record.

        Raises:
            NotFoundError: The message is not in this feed.
            MutationFailure: The write failed.
        """
        record = self._reconciler.get(record_id)
        if record is None:
            raise NotFoundError(message="Message not found")
        if not emoji:
            raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, "Emoji is required")

        me = self._session.username
        reactions = {k: list(v) for k, v in record.reactions.items()}
        authors = reactions.setdefault(emoji, [])
        if me in authors:
            authors.remove(me)
        else:
            authors.append(me)

        payload = reactions_payload(normalize_reactions(reactions))
        updated = await self._write(
            self._backend.update(self._source.collection, record_id, {"reactions": payload})
        )
        if updated is None:
            raise NotFoundError(message="Message not found")
        logger.info("reaction_toggled", feed=self._source.name, row_id=record_id)
        return ChatMessage.model_validate(updated)

    async def set_like_state(self, post_id: str, state: LikeState) -> Post:
        """Set the current user's vote on a post.

        The opposite vote row is deleted before the new one is inserted, so a
        user never holds both. Counts are then rewritten from the vote rows.

        Raises:
            NotFoundError: The post is not in this feed.
            MutationFailure: Any write failed.
        """
        if self._reconciler.get(post_id) is None:
            raise NotFoundError(message="Post not found")

        me = self._session.username
        mine = and_(eq("post_id", post_id), eq("user_name", me))

        if state is LikeState.LIKE:
            keep, drop = tables.POST_LIKES, tables.POST_DISLIKES
        elif state is LikeState.DISLIKE:
            keep, drop = tables.POST_DISLIKES, tables.POST_LIKES
        else:
            keep, drop = None, None

        if keep is None:
            await self._write(self._backend.delete_where(tables.POST_LIKES, mine))
            await self._write(self._backend.delete_where(tables.POST_DISLIKES, mine))
        else:
            await self._write(self._backend.delete_where(drop, mine))
            if await self._write(self._backend.count(keep, mine)) == 0:
                await self._write(
                    self._backend.insert(keep, {"post_id": post_id, "user_name": me})
                )

        of_post = eq("post_id", post_id)
        likes = await self._write(self._backend.count(tables.POST_LIKES, of_post))
        dislikes = await self._write(self._backend.count(tables.POST_DISLIKES, of_post))
        updated = await self._write(
            self._backend.update(tables.POSTS, post_id, {"likes": likes, "dislikes": dislikes})
        )
        if updated is None:
            raise NotFoundError(message="Post not found")

        logger.info(
            "like_state_set",
            feed=self._source.name,
            row_id=post_id,
            state=state.value,
            likes=likes,
            dislikes=dislikes,
        )
        return Post.model_validate(updated)

    async def delete(self, record_id: str) -> None:
        """Delete a record. Admins may delete anything; others only their own.

        Raises:
            NotFoundError: The record is not in this feed.
            ForbiddenError: The record belongs to someone else.
            MutationFailure: The delete failed.
        """
        record: Row | None = self._reconciler.get(record_id)
        if record is None:
            raise NotFoundError()
        author = getattr(record, "author", None)
        if not self._session.is_admin and author != self._session.username:
            raise ForbiddenError(message="You can only delete your own messages")

        await self._write(self._backend.delete(self._source.collection, record_id))
        logger.info("record_deleted", feed=self._source.name, row_id=record_id)

    async def _write(self, awaitable: Awaitable[T]) -> T:
        try:
            return await _bounded(awaitable, self._limits.timeout_s)
        except BackendError as e:
            logger.warning(
                "mutation_failed", feed=self._source.name, error_code=e.code, status=e.status_code
            )
            raise MutationFailure() from e
        except asyncio.TimeoutError as e:
            logger.warning("mutation_failed", feed=self._source.name, error_code="E_TIMEOUT")
            raise MutationFailure() from e


class VoiceRecorder:
    """Captures an audio stream into a VoiceClip.

    Recording force-stops when `max_seconds` elapse, via a timer on the event
    loop, whether or not the source is still producing.
    """

    def __init__(
        self,
        source: AsyncIterator[bytes],
        *,
        max_seconds: float = 30.0,
        content_type: str = VOICE_CONTENT_TYPE,
    ):
        self._source = source
        self._max_seconds = max_seconds
        self._content_type = content_type
        self._chunks: list[bytes] = []
        self._task: asyncio.Task | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._started_at: float | None = None
        self._stopped_at: float | None = None
        self.timed_out = False

    @property
    def recording(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("Recorder already started")
        loop = asyncio.get_running_loop()
        self._started_at = loop.time()
        self._task = loop.create_task(self._capture())
        self._timer = loop.call_later(self._max_seconds, self._force_stop)
        logger.debug("voice_recording_started", max_seconds=self._max_seconds)

    async def _capture(self) -> None:
        async for chunk in self._source:
            self._chunks.append(chunk)

    def _force_stop(self) -> None:
        if self.recording:
            self.timed_out = True
            logger.info("voice_recording_limit_reached", max_seconds=self._max_seconds)
            self._halt()

    def _halt(self) -> None:
        if self._stopped_at is None:
            self._stopped_at = asyncio.get_running_loop().time()
        if self._timer is not None:
            self._timer.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def stop(self) -> VoiceClip:
        """Stop recording now and return what was captured."""
        if self._task is None:
            raise RuntimeError("Recorder was never started")
        self._halt()
        return await self._finish()

    async def wait(self) -> VoiceClip:
        """Wait until the source ends or the time limit hits, then return the clip."""
        if self._task is None:
            raise RuntimeError("Recorder was never started")
        await asyncio.gather(self._task, return_exceptions=True)
        self._halt()
        return await self._finish()

    async def _finish(self) -> VoiceClip:
        assert self._task is not None and self._started_at is not None
        results = await asyncio.gather(self._task, return_exceptions=True)
        error = results[0]
        if isinstance(error, Exception):
            raise error

        stopped_at = self._stopped_at if self._stopped_at is not None else self._started_at
        duration = min(stopped_at - self._started_at, self._max_seconds)
        return VoiceClip(
            data=b"".join(self._chunks), duration_s=duration, content_type=self._content_type
        )

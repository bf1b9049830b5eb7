"""Tests for the posts service.

Tests cover:
- Post creation with and without an image
- Validation and upload failures writing nothing
- Per-user vote lookup, including legacy rows holding both votes
"""

import pytest

from kvrp.backend import tables
from kvrp.config import clear_settings_cache
from kvrp.errors import InvalidRequestError, MutationFailure, SyncErrorCode, UploadFailure
from kvrp.schemas.posts import LikeState
from kvrp.services.posts import create_post, fetch_user_votes
from kvrp.sync.dispatcher import ImageUpload


class TestCreatePost:
    @pytest.mark.asyncio
    async def test_creates_post_with_zero_counts(self, backend, storage, session):
        post = await create_post(backend, storage, session, " Raid night ", " Bring potions ")

        assert post.title == "Raid night"
        assert post.content == "Bring potions"
        assert post.author == "ann"
        assert (post.likes, post.dislikes) == (0, 0)
        assert post.image_url is None

    @pytest.mark.asyncio
    async def test_image_uploaded_first(self, backend, storage, session):
        image = ImageUpload(data=b"gif-bytes", filename="loot.gif")

        post = await create_post(backend, storage, session, "Loot", "Look", image)

        (name,) = storage.object_names("post-images")
        assert post.image_url == storage.public_url("post-images", name)
        assert storage.get_object("post-images", name).content_type == "image/gif"

    @pytest.mark.asyncio
    async def test_missing_fields(self, backend, storage, session):
        with pytest.raises(InvalidRequestError):
            await create_post(backend, storage, session, "Title", "   ")

        assert backend.rows(tables.POSTS) == []

    @pytest.mark.asyncio
    async def test_content_limit(self, backend, storage, session):
        await create_post(backend, storage, session, "t", "x" * 2000)

        with pytest.raises(InvalidRequestError) as exc_info:
            await create_post(backend, storage, session, "t", "x" * 2001)

        assert exc_info.value.code == SyncErrorCode.E_BODY_TOO_LONG

    @pytest.mark.asyncio
    async def test_content_limit_from_env(self, backend, storage, session, monkeypatch):
        monkeypatch.setenv("MAX_POST_CHARS", "10")
        clear_settings_cache()

        with pytest.raises(InvalidRequestError):
            await create_post(backend, storage, session, "t", "x" * 11)

    @pytest.mark.asyncio
    async def test_upload_failure_writes_no_post(self, backend, storage, session):
        storage.fail_uploads = True

        with pytest.raises(UploadFailure):
            await create_post(
                backend, storage, session, "t", "c", ImageUpload(data=b"x", filename="a.png")
            )

        assert backend.rows(tables.POSTS) == []

    @pytest.mark.asyncio
    async def test_write_failure(self, backend, storage, session):
        backend.fail_next("insert", tables.POSTS)

        with pytest.raises(MutationFailure) as exc_info:
            await create_post(backend, storage, session, "t", "c")

        assert exc_info.value.message == "Failed to create post"


class TestFetchUserVotes:
    @pytest.mark.asyncio
    async def test_maps_post_to_vote(self, backend):
        backend.seed(tables.POST_LIKES, {"post_id": "p1", "user_name": "ann"})
        backend.seed(tables.POST_DISLIKES, {"post_id": "p2", "user_name": "ann"})
        backend.seed(tables.POST_LIKES, {"post_id": "p3", "user_name": "bob"})

        votes = await fetch_user_votes(backend, "ann")

        assert votes == {"p1": LikeState.LIKE, "p2": LikeState.DISLIKE}

    @pytest.mark.asyncio
    async def test_legacy_double_vote_reads_as_like(self, backend):
        backend.seed(tables.POST_LIKES, {"post_id": "p1", "user_name": "ann"})
        backend.seed(tables.POST_DISLIKES, {"post_id": "p1", "user_name": "ann"})

        assert await fetch_user_votes(backend, "ann") == {"p1": LikeState.LIKE}

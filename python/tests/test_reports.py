"""Tests for reports and the user side of the admin conversation.

Tests cover:
- Filing reports with and without screenshots
- Report type and field validation
- Admin-only responses, closes and deletes
- Users writing to the admins
"""

from datetime import UTC, datetime

import pytest

from kvrp.backend import tables
from kvrp.errors import ForbiddenError, InvalidRequestError, NotFoundError, UploadFailure
from kvrp.schemas.social import Report, ReportStatus
from kvrp.services import reports
from kvrp.session import Session
from kvrp.sync.dispatcher import ImageUpload


def _report(backend, guest: str = "ann") -> Report:
    (row,) = backend.seed(
        tables.REPORTS,
        {"guest_name": guest, "type": "Bug Report", "description": "stuck in wall", "status": None},
    )
    return Report.model_validate(row)


class TestSubmitReport:
    @pytest.mark.asyncio
    async def test_submit_without_screenshot(self, backend, storage, session):
        report = await reports.submit_report(backend, storage, session, "Bug Report", " stuck ")

        assert report.guest_name == "ann"
        assert report.description == "stuck"
        assert report.status is ReportStatus.OPEN
        assert report.screenshot_url is None

    @pytest.mark.asyncio
    async def test_screenshot_goes_to_screenshot_bucket(self, backend, storage, session):
        shot = ImageUpload(data=b"png", filename="shot.png")

        report = await reports.submit_report(
            backend, storage, session, "Player Report", "griefing", shot
        )

        (name,) = storage.object_names("screenshots")
        assert report.screenshot_url == storage.public_url("screenshots", name)
        assert storage.object_names("post-images") == []

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, backend, storage, session):
        with pytest.raises(InvalidRequestError, match="Unknown report type"):
            await reports.submit_report(backend, storage, session, "Rant", "x")

    @pytest.mark.asyncio
    async def test_missing_description_rejected(self, backend, storage, session):
        with pytest.raises(InvalidRequestError):
            await reports.submit_report(backend, storage, session, "Question", "  ")

    @pytest.mark.asyncio
    async def test_screenshot_upload_failure_writes_nothing(self, backend, storage, session):
        storage.fail_uploads = True

        with pytest.raises(UploadFailure):
            await reports.submit_report(
                backend, storage, session, "Other", "x", ImageUpload(data=b"p", filename="s.png")
            )

        assert backend.rows(tables.REPORTS) == []


class TestAdminActions:
    @pytest.mark.asyncio
    async def test_respond(self, backend, admin_session):
        report = _report(backend)
        now = datetime(2024, 6, 1, 9, 30, tzinfo=UTC)

        updated = await reports.respond_to_report(
            backend, admin_session, report.id, " fixed in 1.2 ", now=now
        )

        assert updated.admin_response == "fixed in 1.2"
        assert updated.admin_response_timestamp == now
        assert updated.has_response

    @pytest.mark.asyncio
    async def test_respond_requires_admin(self, backend, session):
        report = _report(backend)

        with pytest.raises(ForbiddenError):
            await reports.respond_to_report(backend, session, report.id, "hi")

    @pytest.mark.asyncio
    async def test_respond_to_missing_report(self, backend, admin_session):
        with pytest.raises(NotFoundError):
            await reports.respond_to_report(backend, admin_session, "missing", "hi")

    @pytest.mark.asyncio
    async def test_admin_can_close(self, backend, admin_session):
        report = _report(backend)
        assert report.status is ReportStatus.OPEN

        closed = await reports.close_report(backend, admin_session, report)

        assert closed.status is ReportStatus.CLOSED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("username", ["ann", "bob"])
    async def test_non_admin_cannot_close(self, backend, username):
        """The reporter cannot close their own report either."""
        report = _report(backend)

        with pytest.raises(ForbiddenError):
            await reports.close_report(backend, Session(username), report)

        assert backend.rows(tables.REPORTS)[0]["status"] != ReportStatus.CLOSED.value

    @pytest.mark.asyncio
    async def test_delete_is_admin_only(self, backend, session, admin_session):
        report = _report(backend)

        with pytest.raises(ForbiddenError):
            await reports.delete_report(backend, session, report.id)
        await reports.delete_report(backend, admin_session, report.id)

        assert backend.rows(tables.REPORTS) == []


class TestReplyToAdmin:
    @pytest.mark.asyncio
    async def test_user_message(self, backend, session):
        message = await reports.reply_to_admin(backend, session, " hello ")

        assert message.message == "hello"
        assert message.sender_type == "user"
        assert message.author == "ann"

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, backend, session):
        with pytest.raises(InvalidRequestError):
            await reports.reply_to_admin(backend, session, "")

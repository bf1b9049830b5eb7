"""User reports and the admin conversation around them.

Users file reports (optionally with a screenshot) and can write to the
admins. Admins respond to, close and delete reports.
"""

from datetime import UTC, datetime

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase
from kvrp.config import get_settings
from kvrp.errors import ForbiddenError, InvalidRequestError, NotFoundError, SyncErrorCode
from kvrp.logging import get_logger
from kvrp.schemas.social import AdminMessage, Report, ReportStatus
from kvrp.services.calls import commit
from kvrp.session import Session
from kvrp.storage.client import StorageClientBase
from kvrp.sync.dispatcher import ImageUpload, Limits, upload_image

logger = get_logger(__name__)

REPORT_TYPES = ("Bug Report", "Player Report", "Question", "Suggestion", "Other")


def require_admin(session: Session) -> None:
    if not session.is_admin:
        raise ForbiddenError(message="Admin access required")


async def submit_report(
    backend: BackendClientBase,
    storage: StorageClientBase,
    session: Session,
    report_type: str,
    description: str,
    screenshot: ImageUpload | None = None,
    *,
    limits: Limits | None = None,
) -> Report:
    """File a report. The screenshot, if any, is uploaded before the row is written.

    Raises:
        InvalidRequestError: Missing type or description, or oversized screenshot.
        UploadFailure: The screenshot upload failed; no report was written.
        MutationFailure: The report could not be written.
    """
    settings = get_settings()
    limits = limits or Limits.from_settings(settings)

    report_type, description = report_type.strip(), description.strip()
    if not report_type or not description:
        raise InvalidRequestError(
            SyncErrorCode.E_INVALID_REQUEST, "Please fill in all required fields"
        )
    if report_type not in REPORT_TYPES:
        raise InvalidRequestError(
            SyncErrorCode.E_INVALID_REQUEST, f"Unknown report type: {report_type}"
        )

    screenshot_url = None
    if screenshot is not None:
        screenshot_url = await upload_image(storage, settings.screenshot_bucket, screenshot, limits)

    row = await commit(
        backend.insert(
            tables.REPORTS,
            {
                "type": report_type,
                "description": description,
                "guest_name": session.username,
                "screenshot_url": screenshot_url,
                "status": ReportStatus.OPEN.value,
            },
        ),
        operation="submit_report",
        notice="Failed to submit report",
        timeout_s=limits.timeout_s,
    )
    logger.info("report_submitted", row_id=row.get("id"), report_type=report_type)
    return Report.model_validate(row)


async def respond_to_report(
    backend: BackendClientBase,
    session: Session,
    report_id: str,
    response: str,
    *,
    now: datetime | None = None,
) -> Report:
    """Attach an admin response (and its timestamp) to a report."""
    require_admin(session)
    response = response.strip()
    if not response:
        raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, "Response is empty")

    responded_at = (now or datetime.now(UTC)).isoformat()
    row = await commit(
        backend.update(
            tables.REPORTS,
            report_id,
            {"admin_response": response, "admin_response_timestamp": responded_at},
        ),
        operation="respond_to_report",
        notice="Failed to update report",
    )
    if row is None:
        raise NotFoundError(message="Report not found")
    logger.info("report_responded", row_id=report_id)
    return Report.model_validate(row)


async def close_report(backend: BackendClientBase, session: Session, report: Report) -> Report:
    """Close a report. Reporters never change a filed report; only admins close it."""
    require_admin(session)
    row = await commit(
        backend.update(tables.REPORTS, report.id, {"status": ReportStatus.CLOSED.value}),
        operation="close_report",
        notice="Failed to close report",
    )
    if row is None:
        raise NotFoundError(message="Report not found")
    logger.info("report_closed", row_id=report.id)
    return Report.model_validate(row)


async def delete_report(backend: BackendClientBase, session: Session, report_id: str) -> None:
    require_admin(session)
    await commit(
        backend.delete(tables.REPORTS, report_id),
        operation="delete_report",
        notice="Failed to delete report",
    )
    logger.info("report_deleted", row_id=report_id)


async def reply_to_admin(
    backend: BackendClientBase, session: Session, message: str
) -> AdminMessage:
    """Write a user message into the session user's admin conversation."""
    message = message.strip()
    if not message:
        raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, "Message is empty")
    if len(message) > get_settings().max_chat_chars:
        raise InvalidRequestError(SyncErrorCode.E_BODY_TOO_LONG)

    row = await commit(
        backend.insert(
            tables.ADMIN_MESSAGES,
            {"guest_name": session.username, "message": message, "sender_type": "user"},
        ),
        operation="reply_to_admin",
        notice="Failed to send message",
    )
    return AdminMessage.model_validate(row)

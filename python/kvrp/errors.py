"""Client error definitions.

Every failure the sync layer surfaces to a front end is a SyncError carrying
a SyncErrorCode. Feeds catch them, post a notice and fall back to a degraded
view; nothing here is fatal and nothing is retried automatically.
"""

from enum import Enum


class SyncErrorCode(str, Enum):
    """Standardized error codes for the client.

    Format: E_CATEGORY_NAME
    """

    # Feed failures
    E_LOAD_FAILED = "E_LOAD_FAILED"
    E_SUBSCRIPTION_FAILED = "E_SUBSCRIPTION_FAILED"
    E_MUTATION_FAILED = "E_MUTATION_FAILED"
    E_UPLOAD_FAILED = "E_UPLOAD_FAILED"

    # Validation errors (raised before any I/O)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_BODY_TOO_LONG = "E_BODY_TOO_LONG"
    E_FILE_TOO_LARGE = "E_FILE_TOO_LARGE"
    E_RECORDING_TOO_LONG = "E_RECORDING_TOO_LONG"
    E_DUPLICATE_REQUEST = "E_DUPLICATE_REQUEST"

    # Authorization errors
    E_FORBIDDEN = "E_FORBIDDEN"
    E_MUTED = "E_MUTED"

    # Lookup errors
    E_NOT_FOUND = "E_NOT_FOUND"


# Notice text shown to the user for each code when the caller has nothing better.
DEFAULT_NOTICES: dict[SyncErrorCode, str] = {
    SyncErrorCode.E_LOAD_FAILED: "Failed to load messages",
    SyncErrorCode.E_SUBSCRIPTION_FAILED: (
        "Live updates are unavailable; refresh to see new activity"
    ),
    SyncErrorCode.E_MUTATION_FAILED: "Failed to save your changes",
    SyncErrorCode.E_UPLOAD_FAILED: "Failed to upload attachment",
    SyncErrorCode.E_INVALID_REQUEST: "Invalid request",
    SyncErrorCode.E_BODY_TOO_LONG: "Message is too long",
    SyncErrorCode.E_FILE_TOO_LARGE: "File is too large",
    SyncErrorCode.E_RECORDING_TOO_LONG: "Recording is too long",
    SyncErrorCode.E_DUPLICATE_REQUEST: "Request already exists",
    SyncErrorCode.E_FORBIDDEN: "You are not allowed to do that",
    SyncErrorCode.E_MUTED: "You are muted",
    SyncErrorCode.E_NOT_FOUND: "Not found",
}


class SyncError(Exception):
    """Base exception for client errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
    """

    def __init__(self, code: SyncErrorCode, message: str | None = None):
        self.code = code
        self.message = message or DEFAULT_NOTICES.get(code, code.value)
        super().__init__(self.message)


class LoadFailure(SyncError):
    """Snapshot query failed. The feed renders empty or stale."""

    def __init__(self, message: str | None = None):
        super().__init__(SyncErrorCode.E_LOAD_FAILED, message)


class SubscriptionFailure(SyncError):
    """Push channel could not be established. The feed stops updating live."""

    def __init__(self, message: str | None = None):
        super().__init__(SyncErrorCode.E_SUBSCRIPTION_FAILED, message)


class MutationFailure(SyncError):
    """Write rejected by the backend. Caller keeps the user's input."""

    def __init__(self, message: str | None = None):
        super().__init__(SyncErrorCode.E_MUTATION_FAILED, message)


class UploadFailure(SyncError):
    """Attachment upload rejected. The enclosing send is aborted."""

    def __init__(self, message: str | None = None):
        super().__init__(SyncErrorCode.E_UPLOAD_FAILED, message)


class InvalidRequestError(SyncError):
    """Invalid request error."""

    def __init__(
        self, code: SyncErrorCode = SyncErrorCode.E_INVALID_REQUEST, message: str | None = None
    ):
        super().__init__(code, message)


class ForbiddenError(SyncError):
    """Authorization failure error."""

    def __init__(self, code: SyncErrorCode = SyncErrorCode.E_FORBIDDEN, message: str | None = None):
        super().__init__(code, message)


class NotFoundError(SyncError):
    """Resource not found error."""

    def __init__(self, code: SyncErrorCode = SyncErrorCode.E_NOT_FOUND, message: str | None = None):
        super().__init__(code, message)

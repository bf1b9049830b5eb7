"""Storage object naming.

All object names are built by build_object_name() so that production and
test runs never collide.

Name Invariant:
    - Production: {millis}_{suffix}.{ext}          (e.g. 1718000000000_3f2a9c1b.png)
    - Voice:      voice_{millis}_{suffix}.webm
    - Test:       test_runs/{run_id}/{name}

Rules:
    - No leading slash
    - No user identifiers in names
    - Prefix applied exactly once in build_object_name()
"""

import os
import time
from uuid import uuid4

# Environment variable for test run prefix
TEST_PREFIX_ENV_VAR = "STORAGE_TEST_PREFIX"

VOICE_EXTENSION = "webm"

_CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "webm": "audio/webm",
}


def _get_test_prefix() -> str:
    prefix = os.environ.get(TEST_PREFIX_ENV_VAR, "")
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return prefix


def get_file_extension(filename: str) -> str:
    """Return the lowercased extension of a filename, without the dot.

    Raises:
        ValueError: If the filename has no extension.
    """
    _, dot, ext = filename.rpartition(".")
    if not dot or not ext or "/" in ext:
        raise ValueError(f"File name '{filename}' has no extension")
    return ext.lower()


def guess_content_type(ext: str) -> str:
    return _CONTENT_TYPES.get(ext.lower(), "application/octet-stream")


def build_object_name(ext: str, *, voice: bool = False, now_ms: int | None = None) -> str:
    """Build the object name for an uploaded attachment.

    The millisecond timestamp keeps names roughly sortable by upload time; the
    random suffix keeps two uploads in the same millisecond apart.

    Args:
        ext: File extension (without leading dot). Ignored for voice clips.
        voice: Whether the object is a recorded voice clip.
        now_ms: Override for the current time in epoch milliseconds.

    Returns:
        Object name relative to the bucket root.
    """
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = uuid4().hex[:8]
    if voice:
        name = f"voice_{millis}_{suffix}.{VOICE_EXTENSION}"
    else:
        name = f"{millis}_{suffix}.{ext.lstrip('.').lower()}"
    return f"{_get_test_prefix()}{name}"

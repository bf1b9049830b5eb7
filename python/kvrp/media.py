"""Attachment markers inside chat bodies.

Chat rows carry attachments inline so that rows written by older clients stay
readable. The body is the free text, followed by at most one image marker and
at most one voice marker, each on its own line:

    look at this
    [IMAGE:https://.../post-images/1718000000000_3f2a9c1b.png]
    [VOICE:https://.../post-images/voice_1718000000001_77aa01fe.webm]

Only marker lines at the end of the body with an http(s) URL are treated as
attachments. Anything earlier is free text, so a user quoting a marker in the
middle of a message sees it verbatim.
"""

import re
from dataclasses import dataclass
from enum import Enum


class AttachmentKind(str, Enum):
    IMAGE = "IMAGE"
    VOICE = "VOICE"


@dataclass(frozen=True)
class Attachment:
    """One attachment of a chat message."""

    kind: AttachmentKind
    url: str

    def __post_init__(self):
        if not _URL_RE.match(self.url):
            raise ValueError(f"Attachment URL must be http(s): {self.url!r}")

    @property
    def marker(self) -> str:
        return f"[{self.kind.value}:{self.url}]"


_URL_RE = re.compile(r"^https?://\S+$")
_MARKER_RE = re.compile(r"^\[(IMAGE|VOICE):(https?://[^\s\]]+)\]$")


def _parse_marker(line: str) -> Attachment | None:
    match = _MARKER_RE.match(line.strip())
    if not match:
        return None
    return Attachment(kind=AttachmentKind(match.group(1)), url=match.group(2))


def encode_body(text: str, attachments: list[Attachment] | tuple[Attachment, ...] = ()) -> str:
    """Build a stored chat body from free text and attachments.

    The free text is trimmed. Attachments are appended in the given order.

    Raises:
        ValueError: If there is more than one attachment of a kind, or the
            free text ends in a line that would read back as a marker.
    """
    kinds = [a.kind for a in attachments]
    if len(kinds) != len(set(kinds)):
        raise ValueError("At most one attachment of each kind is allowed")

    body = text.strip()
    if body and _parse_marker(body.splitlines()[-1]) is not None:
        raise ValueError("Message text cannot end with an attachment marker")

    for attachment in attachments:
        body += f"\n{attachment.marker}"
    return body


def parse_body(body: str) -> tuple[str, list[Attachment]]:
    """Split a stored chat body into display text and attachments.

    Returns:
        (text, attachments) where text has the trailing marker lines removed
        and attachments are in the order they appear in the body.
    """
    lines = body.splitlines()
    trailing: list[Attachment] = []
    seen_kinds: set[AttachmentKind] = set()

    while lines:
        attachment = _parse_marker(lines[-1])
        if attachment is None or attachment.kind in seen_kinds:
            break
        trailing.append(attachment)
        seen_kinds.add(attachment.kind)
        lines.pop()

    trailing.reverse()
    return "\n".join(lines).strip(), trailing


def strip_markers(body: str) -> str:
    """Return only the display text of a stored chat body."""
    return parse_body(body)[0]

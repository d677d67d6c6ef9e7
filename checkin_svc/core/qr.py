from __future__ import annotations
import re
import uuid
from io import BytesIO

import qrcode

# Attendee codes are "user-{user_id}-{event_id}"; both ids are UUIDs, so the
# first hyphen after the user id is ambiguous. Split on the known lengths.
_CODE_RE = re.compile(
    r"^user-(?P<user>[0-9a-fA-F-]{36})-(?P<event>[0-9a-fA-F-]{36})$"
)

def user_code(*, user_id: uuid.UUID, event_id: uuid.UUID) -> str:
    return f"user-{user_id}-{event_id}"

def validate_user_code(code: str | None, *, user_id: uuid.UUID, event_id: uuid.UUID) -> str | None:
    """Return None when ``code`` belongs to this user and event, else an error message."""
    if not code:
        return "QR code is required"
    if code == user_code(user_id=user_id, event_id=event_id):
        return None
    m = _CODE_RE.match(code)
    if not m:
        return "Invalid QR code format. Expected: user-{userId}-{eventId}"
    if m.group("user").lower() != str(user_id):
        return "QR code does not match user"
    if m.group("event").lower() != str(event_id):
        return "QR code does not match event"
    return "QR code validation failed"

def render_png(data: str) -> bytes:
    img = qrcode.make(data)
    b = BytesIO(); img.save(b, format="PNG")
    return b.getvalue()

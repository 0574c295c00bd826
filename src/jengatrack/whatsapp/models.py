"""WhatsApp message models."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class NormalizedInbound:
    """Transport-neutral inbound message.

    PII: `sender`, `display_name` and `body` are personal data. Keep them in
    memory for the turn, persist only through the store, NEVER log them.
    """

    message_id: str
    sender: str
    body: str | None
    received_at: datetime
    display_name: str | None = None
    attachment_url: str | None = None
    attachment_content_type: str | None = None
    attachment_count: int = 0

    @property
    def kind(self) -> str:
        return "media" if self.attachment_count or self.attachment_url else "text"

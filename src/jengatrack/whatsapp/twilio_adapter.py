"""Twilio WhatsApp adapter - signature check, normalization and TwiML replies.

Twilio posts application/x-www-form-urlencoded fields:
From ("whatsapp:+256..."), Body, MessageSid, NumMedia, MediaUrl{n},
MediaContentType{n}, ProfileName.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any, Mapping
from xml.sax.saxutils import escape

from .models import NormalizedInbound

CHANNEL_PREFIX = "whatsapp:"

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


class InvalidPayloadError(Exception):
    """Raised when a Twilio payload is missing required fields."""


class SignatureVerificationError(Exception):
    """Raised when X-Twilio-Signature does not match the request."""


def compute_signature(url: str, params: Mapping[str, Any], auth_token: str) -> str:
    """Twilio request signature.

    base64(HMAC-SHA1(auth_token, url + key1 + value1 + key2 + value2 ...)),
    keys sorted.
    """
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(
        auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    url: str,
    params: Mapping[str, Any],
    signature_header: str | None,
    auth_token: str,
) -> None:
    """Raise SignatureVerificationError unless the signature matches."""
    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    expected = compute_signature(url, params, auth_token)
    if not hmac.compare_digest(expected, signature_header):
        raise SignatureVerificationError("signature mismatch")


def normalize_address(raw: str) -> str:
    """'whatsapp:+256 772 123456' -> '+256772123456'."""
    address = raw.strip()
    if address.lower().startswith(CHANNEL_PREFIX):
        address = address[len(CHANNEL_PREFIX):]
    return "".join(address.split())


def _str(params: Mapping[str, Any], key: str) -> str | None:
    value = params.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def normalize(
    params: Mapping[str, Any], received_at: datetime | None = None
) -> NormalizedInbound:
    """Normalize Twilio webhook fields.

    Raises:
        InvalidPayloadError: If MessageSid or From is missing, or NumMedia
            is not a number.
    """
    message_id = _str(params, "MessageSid") or _str(params, "SmsMessageSid")
    if not message_id:
        raise InvalidPayloadError("missing MessageSid")

    sender_raw = _str(params, "From")
    if not sender_raw:
        raise InvalidPayloadError("missing From")
    sender = normalize_address(sender_raw)
    if not sender:
        raise InvalidPayloadError("empty sender address")

    try:
        num_media = int(_str(params, "NumMedia") or "0")
    except ValueError as exc:
        raise InvalidPayloadError("NumMedia is not a number") from exc

    attachment_url = None
    content_type = None
    if num_media > 0:
        # Only the first attachment is tracked
        attachment_url = _str(params, "MediaUrl0")
        content_type = _str(params, "MediaContentType0")

    return NormalizedInbound(
        message_id=message_id,
        sender=sender,
        body=params.get("Body") or None,
        received_at=received_at or datetime.now(timezone.utc),
        display_name=_str(params, "ProfileName"),
        attachment_url=attachment_url,
        attachment_content_type=content_type,
        attachment_count=max(num_media, 0),
    )


def render_twiml(text: str | None) -> str:
    """Wrap a reply in a TwiML envelope. No text -> empty Response."""
    if not text:
        return EMPTY_TWIML
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<Response><Message>{escape(text)}</Message></Response>"
    )

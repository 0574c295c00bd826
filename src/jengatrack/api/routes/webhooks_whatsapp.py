"""WhatsApp webhook routes - Twilio integration.

Guarantees:
- Always HTTP 200 with a well-formed TwiML body, so Twilio never retries
  because of an internal failure. Failures show up in the audit log and as
  the apology text.
- The one exception is a request that fails signature verification: 403,
  it was not sent by Twilio.
- Redelivered MessageSid values replay the stored reply (see command engine).
- Logs contain NO message bodies and only masked sender addresses.
"""

import json
import os
from contextlib import contextmanager
from typing import Iterator
from urllib.parse import parse_qs

from fastapi import APIRouter, Header, Request, Response

from jengatrack.domain.store import ConversationStore
from jengatrack.infra.db import txn
from jengatrack.infra.store import PostgresStore
from jengatrack.observability.logging import get_logger
from jengatrack.observability.redaction import mask_address, safe_log_context
from jengatrack.services.command_engine import FallbackResponder, process_inbound
from jengatrack.whatsapp.templates import APOLOGY_TEXT
from jengatrack.whatsapp.twilio_adapter import (
    InvalidPayloadError,
    SignatureVerificationError,
    normalize,
    render_twiml,
    verify_signature,
)

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)


@contextmanager
def _open_store() -> Iterator[ConversationStore]:
    """One transaction per inbound message (allows test injection)."""
    with txn() as cur:
        yield PostgresStore(cur)


def _get_fallback() -> FallbackResponder | None:
    """Optional responder for unknown messages (allows test injection)."""
    return None


def _twiml(text: str | None) -> Response:
    return Response(content=render_twiml(text), media_type="application/xml")


async def _read_params(request: Request) -> dict[str, str]:
    """Form-encoded body (what Twilio sends) or a flat JSON object."""
    body = await request.body()
    content_type = request.headers.get("content-type", "")

    if "application/json" in content_type:
        payload = json.loads(body or b"{}")
        if not isinstance(payload, dict):
            raise InvalidPayloadError("json body is not an object")
        return {str(k): "" if v is None else str(v) for k, v in payload.items()}

    parsed = parse_qs(body.decode("utf-8"), keep_blank_values=True)
    return {key: values[0] for key, values in parsed.items()}


def _signed_url(request: Request) -> str:
    """URL Twilio signed. Behind a proxy, WEBHOOK_BASE_URL gives the public origin."""
    base = os.environ.get("WEBHOOK_BASE_URL", "").rstrip("/")
    if not base:
        return str(request.url)
    query = f"?{request.url.query}" if request.url.query else ""
    return f"{base}{request.url.path}{query}"


def _check_signature(
    request: Request, params: dict[str, str], signature: str | None
) -> bool:
    """Signature gate (fail-closed unless APP_ENV=local)."""
    auth_token = os.environ.get("TWILIO_AUTH_TOKEN", "")
    if not auth_token:
        if os.environ.get("APP_ENV", "") == "local":
            logger.warning("TWILIO_AUTH_TOKEN not set - skipping validation (local dev)")
            return True
        logger.error("TWILIO_AUTH_TOKEN not configured - rejecting webhook (fail-closed)")
        return False

    try:
        verify_signature(_signed_url(request), params, signature, auth_token)
    except SignatureVerificationError as exc:
        logger.warning(
            "twilio signature rejected",
            extra={"extra_fields": safe_log_context(reason=str(exc))},
        )
        return False
    return True


@router.post("/twilio")
async def twilio_webhook(
    request: Request,
    x_twilio_signature: str | None = Header(None, alias="X-Twilio-Signature"),
) -> Response:
    """Receive one Twilio WhatsApp message and answer with TwiML.

    Returns:
        200 with TwiML reply (or empty TwiML) in every case except
        403 when the signature check fails.
    """
    try:
        params = await _read_params(request)
    except (ValueError, UnicodeDecodeError, InvalidPayloadError):
        logger.warning("unreadable webhook body")
        return _twiml(None)

    if not _check_signature(request, params, x_twilio_signature):
        return Response(status_code=403, content="forbidden")

    try:
        msg = normalize(params)
    except InvalidPayloadError as exc:
        logger.warning(
            "invalid twilio payload shape",
            extra={"extra_fields": safe_log_context(reason=str(exc))},
        )
        return _twiml(None)

    logger.info(
        "twilio webhook received",
        extra={
            "extra_fields": safe_log_context(
                sender=mask_address(msg.sender),
                kind=msg.kind,
                attachments=msg.attachment_count,
            )
        },
    )

    config = request.app.state.engine_config
    try:
        with _open_store() as store:
            reply = process_inbound(store, msg, config, fallback=_get_fallback())
    except Exception:
        logger.exception("webhook processing failed")
        return _twiml(APOLOGY_TEXT)

    return _twiml(reply.text)

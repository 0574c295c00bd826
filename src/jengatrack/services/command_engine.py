"""Command engine: one inbound message in, one reply out.

Flow per message:
1. record inbound audit row (duplicate -> replay stored reply, stop)
2. load or register the contact
3. onboarding dialogue if one is active or being started,
   otherwise classify + dispatch
4. compose reply, close the audit row, record the outbound row

All durable state lives in the store; nothing is kept between calls.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from jengatrack.domain.dispatcher import Outcome, dispatch
from jengatrack.domain.models import Contact, DialogueState
from jengatrack.domain.onboarding import (
    Prompt,
    PromptKey,
    Transition,
    advance,
    is_start_message,
)
from jengatrack.domain.parsing import LocaleHints, classify
from jengatrack.domain.rules import EngineConfig
from jengatrack.domain.store import ConversationStore, DialogueConflictError, StoreError
from jengatrack.infra.time import local_today, utc_now
from jengatrack.observability.correlation import bind_message_id
from jengatrack.observability.logging import get_logger
from jengatrack.observability.redaction import mask_address, safe_log_context
from jengatrack.whatsapp.models import NormalizedInbound
from jengatrack.whatsapp.templates import (
    APOLOGY_TEXT,
    compose_prompt,
    compose_reply,
    help_text,
)

logger = get_logger(__name__)

ONBOARDING_INTENT = "onboarding"

# One reload-and-retry after losing an optimistic dialogue update
_DIALOGUE_ATTEMPTS = 2


class FallbackResponder(Protocol):
    """Optional free-text responder consulted only for unknown messages."""

    def respond(self, text: str, contact: Contact) -> str | None: ...


@dataclass(frozen=True)
class EngineReply:
    text: str | None
    duplicate: bool = False
    intent: str | None = None
    error: str | None = None


class _VersionConflict(Exception):
    """Raised inside store.atomic() so a lost update also undoes its side effects."""


def _fallback_or_help(
    fallback: FallbackResponder | None,
    text: str | None,
    contact: Contact,
    config: EngineConfig,
) -> str:
    if fallback is not None and text:
        try:
            answer = fallback.respond(text, contact)
        except Exception:
            logger.exception("fallback responder failed")
            answer = None
        if answer:
            return answer
    return help_text(config)


def _apply_transition(
    store: ConversationStore,
    contact: Contact,
    transition: Transition,
    now: datetime,
) -> None:
    completed_at = now if transition.completes else contact.completed_at
    with store.atomic():
        if transition.project_request is not None:
            store.create_project(transition.project_request)
        updated = store.update_dialogue(
            contact.id,
            contact.dialogue_version,
            transition.state,
            transition.fields,
            completed_at,
        )
        if not updated:
            raise _VersionConflict()


def _wants_dialogue(contact: Contact, body: str | None, config: EngineConfig) -> bool:
    state = contact.dialogue_state
    if state.in_progress:
        return True
    # A finished contact only restarts on a bare start phrase
    return is_start_message(body, config, exact=state == DialogueState.COMPLETED)


def _run_dialogue(
    store: ConversationStore,
    contact: Contact,
    msg: NormalizedInbound,
    config: EngineConfig,
    now: datetime,
    fallback: FallbackResponder | None,
) -> EngineReply:
    for attempt in range(_DIALOGUE_ATTEMPTS):
        if attempt:
            reloaded = store.get_contact(contact.id)
            if reloaded is None:
                raise StoreError(f"contact {contact.id} vanished during dialogue")
            contact = reloaded
            # Someone else finished or abandoned the dialogue meanwhile
            if not _wants_dialogue(contact, msg.body, config):
                return _run_command(store, contact, msg, config, now, fallback)

        transition = advance(
            contact, contact.dialogue_state, contact.fields, msg.body, config
        )
        try:
            _apply_transition(store, contact, transition, now)
        except _VersionConflict:
            logger.warning(
                "dialogue update conflict",
                extra={"extra_fields": safe_log_context(contact_id=contact.id, attempt=attempt)},
            )
            continue
        except StoreError as exc:
            if transition.project_request is None:
                raise
            # Project creation failed: stay in confirmation so "yes" can retry
            logger.error(
                "project creation failed",
                exc_info=True,
                extra={"extra_fields": safe_log_context(contact_id=contact.id)},
            )
            return EngineReply(
                text=compose_prompt(Prompt(PromptKey.PROJECT_FAILED), config),
                intent=ONBOARDING_INTENT,
                error=f"{type(exc).__name__}: {exc}",
            )

        logger.info(
            "dialogue advanced",
            extra={
                "extra_fields": safe_log_context(
                    contact_id=contact.id,
                    from_state=contact.dialogue_state,
                    to_state=transition.state,
                    project_created=transition.project_request is not None,
                )
            },
        )
        return EngineReply(
            text=compose_prompt(transition.prompt, config),
            intent=ONBOARDING_INTENT,
        )

    raise DialogueConflictError(contact.id)


def _run_command(
    store: ConversationStore,
    contact: Contact,
    msg: NormalizedInbound,
    config: EngineConfig,
    now: datetime,
    fallback: FallbackResponder | None,
) -> EngineReply:
    classification = classify(
        msg.body,
        config,
        attachment_url=msg.attachment_url,
        has_attachment=msg.attachment_count > 0,
        hints=LocaleHints(currency=contact.default_currency, language=contact.language),
        reference_date=local_today(now, config.timezone),
    )
    result = dispatch(
        store,
        contact,
        classification,
        config,
        now=now,
        message_id=msg.message_id,
    )

    logger.info(
        "command dispatched",
        extra={
            "extra_fields": safe_log_context(
                intent=classification.intent,
                confidence=classification.confidence,
                rule=classification.rule,
                language=classification.language,
                outcome=result.outcome,
            )
        },
    )

    if result.outcome == Outcome.UNKNOWN:
        text = _fallback_or_help(fallback, msg.body, contact, config)
    else:
        text = compose_reply(result, config)

    return EngineReply(text=text, intent=classification.intent.value, error=result.error)


def _run_turn(
    store: ConversationStore,
    contact: Contact,
    msg: NormalizedInbound,
    config: EngineConfig,
    now: datetime,
    fallback: FallbackResponder | None,
) -> EngineReply:
    if _wants_dialogue(contact, msg.body, config):
        return _run_dialogue(store, contact, msg, config, now, fallback)
    return _run_command(store, contact, msg, config, now, fallback)


def process_inbound(
    store: ConversationStore,
    msg: NormalizedInbound,
    config: EngineConfig,
    *,
    fallback: FallbackResponder | None = None,
    now: datetime | None = None,
) -> EngineReply:
    """Process one delivered message exactly once.

    A redelivered message id short-circuits to the reply recorded the first
    time. Store failures during the turn are recorded on the audit row and
    answered with the apology text; failures writing the audit row itself
    propagate to the caller.
    """
    now = now or utc_now()

    with bind_message_id(msg.message_id):
        audit_id = store.record_inbound(
            msg.message_id, msg.sender, msg.body, msg.attachment_url, msg.received_at
        )
        if audit_id is None:
            logger.info("duplicate inbound, replaying reply")
            return EngineReply(text=store.get_reply(msg.message_id), duplicate=True)

        contact = store.get_or_create_contact(
            msg.sender, msg.display_name, config.default_currency
        )

        try:
            with store.atomic():
                reply = _run_turn(store, contact, msg, config, now, fallback)
        except DialogueConflictError as exc:
            logger.error(
                "dialogue conflict persisted after retry",
                extra={"extra_fields": safe_log_context(contact_id=exc.contact_id)},
            )
            reply = EngineReply(text=APOLOGY_TEXT, intent=ONBOARDING_INTENT, error=str(exc))
        except StoreError as exc:
            logger.error("turn failed in store", exc_info=True)
            reply = EngineReply(text=APOLOGY_TEXT, error=f"{type(exc).__name__}: {exc}")

        store.finish_inbound(audit_id, reply.intent, reply.error)
        store.record_outbound(audit_id, reply.text)

        logger.info(
            "inbound processed",
            extra={
                "extra_fields": safe_log_context(
                    sender=mask_address(msg.sender),
                    kind=msg.kind,
                    intent=reply.intent,
                    failed=reply.error is not None,
                    dialogue_state=contact.dialogue_state,
                )
            },
        )
        return reply

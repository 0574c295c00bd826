"""Request-scoped identifiers carried into every log record.

correlation id: one per HTTP request (X-Correlation-ID or generated).
message id: the inbound message being processed during a turn.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
message_id_var: ContextVar[str] = ContextVar("message_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)


def get_message_id() -> str:
    return message_id_var.get()


@contextmanager
def bind_message_id(message_id: str) -> Iterator[None]:
    """Attach an inbound message id to logs emitted inside the block."""
    token = message_id_var.set(message_id)
    try:
        yield
    finally:
        message_id_var.reset(token)

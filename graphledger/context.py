"""Request-scoped actor context for audit attribution."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """Who performed a mutation, and from where.

    Attributes:
        user_id: Authenticated user, if any
        ip_address: Source address of the request, if any
    """

    user_id: str | None = None
    ip_address: str | None = None


ANONYMOUS = Actor()

_current_actor: ContextVar[Actor] = ContextVar("graphledger_actor", default=ANONYMOUS)


def current_actor() -> Actor:
    """Return the actor bound to the current context."""
    return _current_actor.get()


def set_actor(actor: Actor) -> Token[Actor]:
    """Bind an actor to the current context and return the reset token."""
    return _current_actor.set(actor)


def reset_actor(token: Token[Actor]) -> None:
    """Restore the actor that was bound before ``set_actor``."""
    _current_actor.reset(token)


@contextmanager
def actor_scope(actor: Actor) -> Iterator[Actor]:
    """Bind ``actor`` for the duration of a ``with`` block."""
    token = set_actor(actor)
    try:
        yield actor
    finally:
        reset_actor(token)


def resolve_actor(actor: Actor | None) -> Actor:
    """Explicit actor wins; otherwise fall back to the context-bound one."""
    return actor if actor is not None else current_actor()


def client_ip_from_headers(headers: Mapping[str, str], peer: str | None = None) -> str | None:
    """Pick the client address from proxy headers, falling back to the socket peer.

    Order: first hop of X-Forwarded-For, then X-Real-IP, then ``peer``.
    """
    forwarded = headers.get("x-forwarded-for") or headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip") or headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return peer

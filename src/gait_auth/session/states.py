"""Authentication session states.

``Authenticating`` and ``AuthenticationRetry`` are the only non-terminal
states; everything else ends the session.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from gait_auth.models import AuthenticationDecision, RejectionReason


@dataclass(frozen=True, slots=True)
class Authenticating:
    attempt: int = 1
    last_confidence: float | None = None
    terminal = False


@dataclass(frozen=True, slots=True)
class AuthenticationRetry:
    """A failed attempt with attempts remaining; collection continues."""

    decision: AuthenticationDecision
    attempts_remaining: int
    terminal = False


@dataclass(frozen=True, slots=True)
class AuthenticationSucceeded:
    decision: AuthenticationDecision
    terminal = True


@dataclass(frozen=True, slots=True)
class AuthenticationFailed:
    reason: RejectionReason
    decision: AuthenticationDecision | None = None
    detail: str = ""
    terminal = True


@dataclass(frozen=True, slots=True)
class AuthenticationLockedOut:
    attempts: int
    decision: AuthenticationDecision
    terminal = True


@dataclass(frozen=True, slots=True)
class AuthenticationCancelled:
    terminal = True


@dataclass(frozen=True, slots=True)
class AuthenticationExpired:
    terminal = True


AuthenticationState = Union[
    Authenticating,
    AuthenticationRetry,
    AuthenticationSucceeded,
    AuthenticationFailed,
    AuthenticationLockedOut,
    AuthenticationCancelled,
    AuthenticationExpired,
]

"""
Authentication Errors
=====================
Error taxonomy surfaced to callers of the auth engine.

Two families:
    - ``AuthError``          : anything in the login path, tagged with the
                               phase that failed (navigation, credentials,
                               mfa, callback).
    - ``StorageStateError``  : anything in the persistence path, tagged with
                               a cause (missing, corrupted, invalid).

``AuthResult`` is the value a single login attempt produces.  The flow
engine returns it instead of raising so the provider layer can classify
failures explicitly before deciding to retry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# ---------------------------------------------------------------------------
# Phases and causes
# ---------------------------------------------------------------------------

PHASE_NAVIGATION = "navigation"
PHASE_CREDENTIALS = "credentials"
PHASE_MFA = "mfa"
PHASE_CALLBACK = "callback"

AUTH_PHASES = (PHASE_NAVIGATION, PHASE_CREDENTIALS, PHASE_MFA, PHASE_CALLBACK)

CAUSE_MISSING = "missing"
CAUSE_CORRUPTED = "corrupted"
CAUSE_INVALID = "invalid"

STORAGE_CAUSES = (CAUSE_MISSING, CAUSE_CORRUPTED, CAUSE_INVALID)


# ---------------------------------------------------------------------------
# Login path
# ---------------------------------------------------------------------------

class AuthError(Exception):
    """A failure somewhere in the login path.

    Attributes:
        role:         Role being authenticated ("unknown" when not known).
        phase:        One of ``AUTH_PHASES``.
        idp_response: Error text scraped from the IdP page, if any.
        remediation:  Hint for a human operator.
    """

    def __init__(
        self,
        message: str,
        role: str = "unknown",
        phase: str = PHASE_CREDENTIALS,
        idp_response: Optional[str] = None,
        remediation: Optional[str] = None,
    ):
        if phase not in AUTH_PHASES:
            raise ValueError(f"Unknown auth phase: {phase!r}")
        super().__init__(message)
        self.message = message
        self.role = role
        self.phase = phase
        self.idp_response = idp_response
        self.remediation = remediation

    def __str__(self) -> str:
        text = f"[{self.role}:{self.phase}] {self.message}"
        if self.idp_response:
            text += f" (IdP: {self.idp_response})"
        if self.remediation:
            text += f"\n  Remediation: {self.remediation}"
        return text


class MfaError(AuthError):
    """MFA could not be completed (missing secret, unsupported type, ...)."""

    def __init__(
        self,
        message: str,
        role: str = "unknown",
        idp_response: Optional[str] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(message, role, PHASE_MFA, idp_response, remediation)


class RequiredActionError(AuthError):
    """The IdP demands an interactive action that cannot run headlessly."""

    def __init__(self, message: str, role: str = "unknown", indicator: str = ""):
        super().__init__(
            message,
            role,
            PHASE_CALLBACK,
            remediation=(
                "Log in once manually with this account and complete the "
                "required action (password update, email verification, ...)"
            ),
        )
        self.indicator = indicator


@dataclass
class AuthResult:
    """Outcome of a single login attempt."""
    success: bool
    final_url: str = ""
    duration_ms: int = 0
    phase: str = PHASE_CALLBACK
    error: Optional[AuthError] = None


# ---------------------------------------------------------------------------
# Persistence path
# ---------------------------------------------------------------------------

class StorageStateError(Exception):
    """A failure reading or writing a stored session artifact."""

    def __init__(self, message: str, role: str, path: str, cause: str):
        if cause not in STORAGE_CAUSES:
            raise ValueError(f"Unknown storage state cause: {cause!r}")
        super().__init__(message)
        self.message = message
        self.role = role
        self.path = path
        self.cause = cause

    def __str__(self) -> str:
        return f"[{self.role}:{self.cause}] {self.message} ({self.path})"

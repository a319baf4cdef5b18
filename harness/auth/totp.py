"""
TOTP Engine
===========
Time-based one-time codes for MFA-enabled test accounts (RFC 6238, 30s
window, 6 digits) via ``pyotp``.

Secrets are normalised (whitespace stripped, upper-cased) before being
treated as base32, so values pasted from an authenticator enrolment page
work as-is.
"""

from __future__ import annotations

import asyncio
import binascii
import logging
import os
import time
from typing import Awaitable, Callable, Mapping, Optional

import pyotp

from .errors import MfaError

logger = logging.getLogger(__name__)

TOTP_STEP_SECONDS = 30
TOTP_DIGITS = 6
FRESH_WINDOW_THRESHOLD_SECONDS = 5


def normalize_secret(secret: str) -> str:
    return "".join(secret.split()).upper()


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(normalize_secret(secret), digits=TOTP_DIGITS, interval=TOTP_STEP_SECONDS)


def generate_totp(secret: str, for_time: Optional[float] = None) -> str:
    """Generate the current 6-digit code for *secret*.

    Raises:
        ValueError: If *secret* is not valid base32.
    """
    try:
        totp = _totp(secret)
        if for_time is None:
            return totp.now()
        return totp.at(for_time)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"Invalid base32 TOTP secret: {e}") from e


def verify_totp(code: str, secret: str, valid_window: int = 1) -> bool:
    """Return True if *code* is valid for *secret* (±``valid_window`` steps).

    Never raises: a malformed secret or code simply fails verification.
    """
    try:
        return _totp(secret).verify(str(code).strip(), valid_window=valid_window)
    except (binascii.Error, TypeError, ValueError):
        return False


def time_until_next_window(step: int = TOTP_STEP_SECONDS, now: Optional[float] = None) -> float:
    """Seconds remaining in the current TOTP window, in ``(0, step]``."""
    now = time.time() if now is None else now
    return step - (now % step)


async def wait_for_fresh_window(
    threshold_seconds: float = FRESH_WINDOW_THRESHOLD_SECONDS,
    step: int = TOTP_STEP_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.time,
) -> bool:
    """Sleep into the next window if the current one is about to rotate.

    A code generated with less than *threshold_seconds* left may expire
    before the IdP checks it.

    Returns:
        True if it waited.
    """
    remaining = time_until_next_window(step, clock())
    if remaining < threshold_seconds:
        logger.info(f"[TOTP] Window rotates in {remaining:.1f}s, waiting for a fresh one")
        await sleep(remaining + 1)
        return True
    return False


# ── Environment-variable variants ────────────────────────────────

def _secret_from_env(secret_env: str, env: Optional[Mapping[str, str]]) -> str:
    source = os.environ if env is None else env
    secret = (source.get(secret_env) or "").strip()
    if not secret:
        raise MfaError(
            f'TOTP secret environment variable "{secret_env}" is not set',
            remediation=f"Set the {secret_env} environment variable with your TOTP secret",
        )
    return secret


def generate_totp_code(secret_env: str, env: Optional[Mapping[str, str]] = None) -> str:
    """Generate a code from the secret held in *secret_env*.

    Raises:
        MfaError: If the variable is unset or holds an invalid secret.
    """
    secret = _secret_from_env(secret_env, env)
    try:
        return generate_totp(secret)
    except ValueError as e:
        raise MfaError(
            f"Failed to generate TOTP code: {e}",
            remediation=f"Verify that {secret_env} contains a valid base32-encoded TOTP secret",
        ) from e


def verify_totp_code(code: str, secret_env: str, env: Optional[Mapping[str, str]] = None) -> bool:
    source = os.environ if env is None else env
    secret = source.get(secret_env)
    if not secret:
        return False
    return verify_totp(code, secret)

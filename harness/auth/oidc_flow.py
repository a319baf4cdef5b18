"""
OIDC Login Flow
===============
Drives ONE login attempt through an IdP, phase by phase:

    navigate → [IdP redirect] → fill credentials → submit
             → [MFA] → [post-login prompts] → wait for success

Every step maps to a failure phase (navigation, credentials, mfa,
callback).  ``execute_oidc_flow`` never raises for flow failures: it
returns an ``AuthResult`` carrying a phase-tagged ``AuthError`` so the
provider layer can decide whether to retry.

Usage::

    from harness.auth.oidc_flow import execute_oidc_flow

    result = await execute_oidc_flow(page, oidc_config, creds, role="admin")
    if not result.success:
        raise result.error
"""

from __future__ import annotations

import asyncio
import logging
import time as _time
from typing import Awaitable, List, Mapping, Optional, Pattern, Union
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .config import OIDCConfig, SuccessConfig
from .credentials import Credentials
from .errors import (
    PHASE_CALLBACK,
    PHASE_CREDENTIALS,
    PHASE_NAVIGATION,
    AuthError,
    AuthResult,
    MfaError,
)
from .idp import BaseIdpHandler, get_idp_handler
from .probing import SelectorProbe

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_TIMEOUT_MS = 10_000
SESSION_CHECK_TIMEOUT_MS = 1_000

# Checked after the IdP handler's own error selectors.
CALLBACK_ERROR_SELECTORS = [
    ".error-message",
    ".alert-danger",
    ".error",
    '[role="alert"]',
    ".login-error",
    "#error-message",
]


def url_matches(url: str, pattern: Union[str, Pattern[str], None]) -> bool:
    """Substring match for strings, ``search`` for compiled patterns."""
    if pattern is None:
        return False
    if isinstance(pattern, str):
        return pattern in url
    return pattern.search(url) is not None


def _elapsed_ms(start: float) -> int:
    return int((_time.monotonic() - start) * 1000)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def execute_oidc_flow(
    page: Page,
    config: OIDCConfig,
    credentials: Credentials,
    handler: Optional[BaseIdpHandler] = None,
    role: str = "unknown",
    skip_idp_redirect: Optional[bool] = None,
    env: Optional[Mapping[str, str]] = None,
    probe: Optional[SelectorProbe] = None,
    log: Optional[logging.Logger] = None,
) -> AuthResult:
    """Run one complete OIDC login attempt on *page*.

    Args:
        page:              Page in the context that will own the session.
        config:            Effective OIDC config (role overrides already merged).
        credentials:       Resolved credentials for *role*.
        handler:           IdP handler; looked up from ``config.idp_type`` if omitted.
        role:              Role name, for error attribution and logs.
        skip_idp_redirect: Overrides ``config.skip_idp_redirect`` when given.
        env:               Environment for the TOTP secret (default ``os.environ``).
        probe:             Visibility probe for prompt and error detection.

    Returns:
        ``AuthResult``; on failure ``error`` holds the phase-tagged ``AuthError``.
    """
    log = log or logger
    probe = probe or SelectorProbe()
    handler = handler or get_idp_handler(config.idp_type, probe, log)
    selectors = handler.merge_selectors(config.idp_selectors)
    skip = config.skip_idp_redirect if skip_idp_redirect is None else skip_idp_redirect
    start = _time.monotonic()

    log.info(f"[OIDC] Starting login for role '{role}' via {handler.idp_type}")

    try:
        # ── Step 1: Navigate to the application's login URL ───────
        await _navigate_to_login(page, config, role, log)

        # ── Step 2: Wait for the IdP login page ──────────────────
        if skip or config.login_url == config.idp_login_url:
            log.debug("[OIDC] Skipping IdP redirect wait")
        else:
            await _wait_for_idp_redirect(page, config, role, log)

        # ── Step 3: Fill credentials ─────────────────────────────
        await _run_step(
            handler.fill_credentials(page, credentials, selectors),
            "Failed to fill credentials on IdP page",
            role, PHASE_CREDENTIALS,
            remediation="Check oidc.idp_selectors against the IdP login page",
        )

        # ── Step 4: Submit ───────────────────────────────────────
        await _run_step(
            handler.submit_form(page, selectors),
            "Failed to submit login form",
            role, PHASE_CREDENTIALS,
        )

        # ── Step 5: MFA ──────────────────────────────────────────
        if config.mfa is not None and config.mfa.enabled:
            await _handle_mfa(page, config, handler, role, env, log)

        # ── Step 6: Post-login prompts ───────────────────────────
        await _run_step(
            handler.handle_post_login_prompts(page, selectors),
            "Failed to handle post-login prompt",
            role, PHASE_CALLBACK,
        )

        # ── Step 7: Wait for the application ─────────────────────
        await _await_success(page, config, handler, role, probe, log)

    except AuthError as e:
        if e.role == "unknown":
            e.role = role
        duration = _elapsed_ms(start)
        log.error(f"[OIDC] Login failed for role '{role}' in {e.phase} phase after {duration}ms: {e.message}")
        return AuthResult(success=False, final_url=page.url, duration_ms=duration, phase=e.phase, error=e)

    duration = _elapsed_ms(start)
    log.info(f"[OIDC] Login succeeded for role '{role}' in {duration}ms")
    return AuthResult(success=True, final_url=page.url, duration_ms=duration, phase=PHASE_CALLBACK)


async def detect_auth_error(
    page: Page,
    handler: Optional[BaseIdpHandler] = None,
    probe: Optional[SelectorProbe] = None,
) -> Optional[str]:
    """Return an error message shown on the page, if any.

    Tries the IdP handler's own selectors first, then a generic list.
    """
    if handler is not None:
        message = await handler.get_error_message(page)
        if message:
            return message
    probe = probe or SelectorProbe()
    return await probe.first_visible_text(page, CALLBACK_ERROR_SELECTORS)


async def is_oidc_session_valid(
    page: Page,
    config: OIDCConfig,
    probe: Optional[SelectorProbe] = None,
) -> bool:
    """True if the page shows the configured success indicators."""
    success = config.success
    pattern = success.url_pattern
    if pattern is not None and not url_matches(page.url, pattern):
        return False
    if success.selector:
        probe = probe or SelectorProbe()
        return await probe.is_visible(page, success.selector, SESSION_CHECK_TIMEOUT_MS)
    return True


async def wait_for_success(
    page: Page,
    success: SuccessConfig,
    default_timeout_ms: int = DEFAULT_SUCCESS_TIMEOUT_MS,
) -> None:
    """Wait for the configured success URL and/or selector.

    With both configured the two waits race and the first to succeed
    wins.  With neither, waits (best effort) for network idle.

    Raises:
        PlaywrightError: If every configured wait fails.
    """
    timeout = success.timeout_ms or default_timeout_ms
    waits: List[Awaitable[object]] = []

    pattern = success.url_pattern
    if pattern is not None:
        waits.append(page.wait_for_url(lambda url: url_matches(url, pattern), timeout=timeout))
    if success.selector:
        waits.append(page.wait_for_selector(success.selector, state="visible", timeout=timeout))

    if not waits:
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout)
        except PlaywrightTimeout:
            pass
        return

    await _first_to_succeed(waits)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

async def _run_step(
    step: Awaitable[None],
    failure: str,
    role: str,
    phase: str,
    remediation: Optional[str] = None,
) -> None:
    try:
        await step
    except AuthError:
        raise
    except PlaywrightError as e:
        raise AuthError(f"{failure}: {e}", role=role, phase=phase, remediation=remediation) from e


async def _navigate_to_login(page: Page, config: OIDCConfig, role: str, log: logging.Logger) -> None:
    log.debug(f"[OIDC] Navigating to {config.login_url}")
    try:
        await page.goto(
            config.login_url,
            wait_until="domcontentloaded",
            timeout=config.timeouts.login_flow_ms,
        )
    except PlaywrightError as e:
        raise AuthError(
            f"Failed to navigate to login URL: {e}",
            role=role,
            phase=PHASE_NAVIGATION,
            remediation=f"Verify the login URL is correct and accessible: {config.login_url}",
        ) from e


async def _wait_for_idp_redirect(page: Page, config: OIDCConfig, role: str, log: logging.Logger) -> None:
    timeout = config.timeouts.idp_redirect_ms

    if config.idp_login_url:
        host = urlparse(config.idp_login_url).netloc or config.idp_login_url
        try:
            await page.wait_for_url(lambda url: host in url, timeout=timeout)
        except PlaywrightTimeout as e:
            raise AuthError(
                f"Timeout waiting for IdP redirect: {e}",
                role=role,
                phase=PHASE_NAVIGATION,
                remediation=f"Verify the application redirects to the IdP at {config.idp_login_url}",
            ) from e
        log.debug(f"[OIDC] Redirected to IdP: {page.url[:120]}")
        return

    start_url = page.url
    try:
        await page.wait_for_url(lambda url: url != start_url, timeout=timeout)
        log.debug(f"[OIDC] Redirected to: {page.url[:120]}")
    except PlaywrightTimeout:
        # SPAs may render the IdP form without changing the URL.
        log.debug("[OIDC] URL unchanged after redirect wait, continuing on current page")


async def _handle_mfa(
    page: Page,
    config: OIDCConfig,
    handler: BaseIdpHandler,
    role: str,
    env: Optional[Mapping[str, str]],
    log: logging.Logger,
) -> None:
    mfa = config.mfa
    if mfa.type == "sms":
        raise MfaError(
            "SMS-based MFA is not supported for automated testing",
            role=role,
            remediation="Configure TOTP-based MFA for the test account instead",
        )
    if mfa.type == "totp" and not mfa.totp_secret_env:
        raise MfaError(
            "TOTP MFA is enabled but no secret environment variable is configured",
            role=role,
            remediation="Set oidc.mfa.totp_secret_env to the variable holding the TOTP secret",
        )

    log.info(f"[OIDC] Handling {mfa.type} MFA for role '{role}'")
    try:
        await handler.handle_mfa(page, mfa, role, env)
    except MfaError:
        raise
    except PlaywrightError as e:
        raise MfaError(f"MFA step failed: {e}", role=role) from e


async def _await_success(
    page: Page,
    config: OIDCConfig,
    handler: BaseIdpHandler,
    role: str,
    probe: SelectorProbe,
    log: logging.Logger,
) -> None:
    try:
        await wait_for_success(page, config.success, config.timeouts.callback_ms)
        return
    except PlaywrightError as e:
        cause = e

    idp_error = await detect_auth_error(page, handler, probe)
    if idp_error:
        log.error(f"[OIDC] IdP reported: {idp_error}")
        raise AuthError(
            f"Authentication callback failed: IdP reported: {idp_error}",
            role=role,
            phase=PHASE_CALLBACK,
            idp_response=idp_error,
            remediation=f'Verify credentials for role "{role}" are correct',
        )
    raise AuthError(
        f"Authentication callback failed: {cause}",
        role=role,
        phase=PHASE_CALLBACK,
        remediation="Check that oidc.success (url / selector) matches the page shown after login",
    )


async def _first_to_succeed(waits: List[Awaitable[object]]) -> None:
    """Await several waits; return when one succeeds, else raise the first error."""
    pending = {asyncio.ensure_future(w) for w in waits}
    errors: List[BaseException] = []
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                error = task.exception()
                if error is None:
                    return
                errors.append(error)
        raise errors[0]
    finally:
        for task in pending:
            task.cancel()

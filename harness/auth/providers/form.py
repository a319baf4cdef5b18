"""
Form Provider
=============
Direct username/password login on the application's own form.  No IdP
redirect and no MFA.
"""

from __future__ import annotations

import logging
import time as _time
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..base_auth import BaseAuthProvider
from ..config import FormAuthConfig, RetryOptions
from ..credentials import Credentials
from ..errors import PHASE_CALLBACK, PHASE_CREDENTIALS, PHASE_NAVIGATION, AuthError, AuthResult
from ..probing import SelectorProbe

logger = logging.getLogger(__name__)

LOGOUT_PATHS = ["/logout", "/api/logout", "/signout"]

FORM_ERROR_SELECTORS = [
    ".error",
    ".error-message",
    ".alert-danger",
    ".alert-error",
    '[role="alert"]',
    ".form-error",
    ".login-error",
    "#error",
]


class FormAuthProvider(BaseAuthProvider):
    provider_name = "Form"

    def __init__(
        self,
        config: FormAuthConfig,
        role: str = "unknown",
        retry_options: Optional[RetryOptions] = None,
        probe: Optional[SelectorProbe] = None,
        log: Optional[logging.Logger] = None,
    ):
        super().__init__(role, retry_options, probe, log or logger)
        self.config = config

    async def _attempt(self, page: Page, credentials: Credentials) -> AuthResult:
        cfg = self.config
        start = _time.monotonic()

        # ── Step 1: Navigate ──────────────────────────────────────
        try:
            await page.goto(cfg.login_url, wait_until="domcontentloaded", timeout=cfg.timeouts.navigation_ms)
        except PlaywrightError as e:
            raise AuthError(
                f"Failed to navigate to login page: {e}",
                role=self.role,
                phase=PHASE_NAVIGATION,
                remediation=f"Verify the login URL is correct and accessible: {cfg.login_url}",
            ) from e

        # ── Step 2: Fill and submit ───────────────────────────────
        try:
            await self.fill_field(page, cfg.selectors.username, credentials.username, cfg.timeouts.submit_ms)
            await self.fill_field(page, cfg.selectors.password, credentials.password, cfg.timeouts.submit_ms)
            await self.click_element(page, cfg.selectors.submit, cfg.timeouts.submit_ms)
        except PlaywrightError as e:
            raise AuthError(
                f"Failed to fill credentials: {e}",
                role=self.role,
                phase=PHASE_CREDENTIALS,
                remediation="Check form.selectors against the login page",
            ) from e

        # ── Step 3: Wait for success ──────────────────────────────
        success = cfg.success
        reached = await self.wait_for_login_success(
            page,
            url_pattern=success.url_pattern,
            selector=success.selector,
            timeout_ms=success.timeout_ms or cfg.timeouts.success_ms,
        )
        duration = int((_time.monotonic() - start) * 1000)
        if reached:
            self.log.info(f"{self.tag} Login succeeded for role '{self.role}' in {duration}ms")
            return AuthResult(success=True, final_url=page.url, duration_ms=duration, phase=PHASE_CALLBACK)

        idp_error = await self.probe.first_visible_text(page, FORM_ERROR_SELECTORS)
        if idp_error:
            message = f"Login failed: {idp_error}"
        else:
            message = f"Login success indicators not reached within {success.timeout_ms or cfg.timeouts.success_ms}ms timeout"
        return AuthResult(
            success=False,
            final_url=page.url,
            duration_ms=duration,
            phase=PHASE_CALLBACK,
            error=AuthError(
                message,
                role=self.role,
                phase=PHASE_CALLBACK,
                idp_response=idp_error,
                remediation="Check form.success (url / selector) and the role's credentials",
            ),
        )

    async def is_session_valid(self, page: Page) -> bool:
        if self.config.login_url in page.url:
            return False
        success = self.config.success
        if success.url_pattern is not None and not self.url_matches(page.url, success.url_pattern):
            return False
        if success.selector:
            return await self.is_element_visible(page, success.selector, 1_000)
        return True

    async def logout(self, page: Page) -> None:
        try:
            await self.try_logout_urls(page, LOGOUT_PATHS)
        finally:
            await page.context.clear_cookies()

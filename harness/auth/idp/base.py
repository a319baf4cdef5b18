"""
Base Identity-Provider Handler
==============================
Defines the contract every IdP login-page handler implements, and the
behaviour shared by the generic fallback.

To add a new IdP (e.g. PingFederate):
    1. Create ``ping.py`` with a class inheriting from ``BaseIdpHandler``
    2. Override the selector tables and whichever steps differ
    3. Register it with ``IdpRegistry.register("ping", PingHandler)``
    4. Set ``oidc.idp_type: ping`` in the auth config.

Handlers only drive the IdP page.  Navigation, redirects, success
detection and retries belong to the flow engine and provider layer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from ..config import MFAConfig
from ..credentials import Credentials
from ..errors import MfaError
from ..probing import SelectorProbe, poll_until
from ..totp import generate_totp_code, wait_for_fresh_window

logger = logging.getLogger(__name__)

SELECTOR_KEYS = ("username", "password", "submit", "totp_input", "totp_submit", "stay_signed_in_no")

# ---------------------------------------------------------------------------
# Generic selector banks (ordered by likelihood)
# ---------------------------------------------------------------------------

GENERIC_SELECTORS: Dict[str, str] = {
    "username": ", ".join([
        'input[type="email"]',
        'input[name="username"]',
        'input[name="email"]',
        'input[id*="username"]',
        'input[id*="email"]',
        'input[autocomplete="username"]',
    ]),
    "password": ", ".join([
        'input[type="password"]',
        'input[name="password"]',
        'input[id*="password"]',
        'input[autocomplete="current-password"]',
    ]),
    "submit": ", ".join([
        'button[type="submit"]',
        'input[type="submit"]',
        'button:has-text("Sign in")',
        'button:has-text("Log in")',
        'button:has-text("Login")',
        'button:has-text("Submit")',
    ]),
    "totp_input": ", ".join([
        'input[name*="otp"]',
        'input[name*="totp"]',
        'input[name*="code"]',
        'input[name*="token"]',
        'input[type="tel"][maxlength="6"]',
        'input[autocomplete="one-time-code"]',
    ]),
    "totp_submit": ", ".join([
        'button[type="submit"]',
        'input[type="submit"]',
        'button:has-text("Verify")',
        'button:has-text("Submit")',
    ]),
}

GENERIC_ERROR_SELECTORS: List[str] = [
    ".error",
    ".error-message",
    ".alert-danger",
    ".alert-error",
    '[role="alert"]',
    ".form-error",
    ".login-error",
]


class BaseIdpHandler:
    """Drives one IdP family's login page.

    Subclasses typically override only the class-level tables:
        - ``idp_type``          registry key (e.g. "keycloak")
        - ``DEFAULT_SELECTORS`` selector table keyed by ``SELECTOR_KEYS``
        - ``ERROR_SELECTORS``   where the IdP renders login errors
        - ``URL_MARKERS``       URL fragments used by ``matches_url``
        - ``PUSH_URL_MARKERS``  URL fragments present while a push is pending
    """

    idp_type: str = "generic"
    DEFAULT_SELECTORS: Dict[str, str] = GENERIC_SELECTORS
    ERROR_SELECTORS: List[str] = GENERIC_ERROR_SELECTORS
    URL_MARKERS: Tuple[str, ...] = ()
    PUSH_URL_MARKERS: Tuple[str, ...] = ("mfa", "2fa")

    FIELD_TIMEOUT_MS = 10_000
    SUBMIT_SETTLE_MS = 5_000
    PUSH_POLL_INTERVAL_MS = 1_000

    def __init__(
        self,
        probe: Optional[SelectorProbe] = None,
        log: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.probe = probe or SelectorProbe()
        self.log = log or logger
        self.sleep = sleep

    # ── Selectors ─────────────────────────────────────────────────

    def get_default_selectors(self) -> Dict[str, str]:
        """Return a copy of the built-in selector table."""
        return dict(self.DEFAULT_SELECTORS)

    def merge_selectors(self, custom: Optional[Mapping[str, Optional[str]]] = None) -> Dict[str, str]:
        """Defaults overlaid with any non-empty custom selectors."""
        merged = self.get_default_selectors()
        for key, value in (custom or {}).items():
            if value:
                merged[key] = value
        return merged

    # ── Detection ─────────────────────────────────────────────────

    def matches_url(self, url: str) -> bool:
        """Return True if *url* looks like this IdP's login page.

        Pattern matching only, no network calls.
        """
        url_lower = url.lower()
        return any(marker in url_lower for marker in self.URL_MARKERS)

    # ── Login steps ───────────────────────────────────────────────

    async def fill_credentials(
        self,
        page: Page,
        credentials: Credentials,
        selectors: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Fill username and password, handling two-step pages.

        Single-page forms show both fields at once.  Two-step forms show
        only the username; it is submitted ("Next") and the password is
        filled once its field appears.
        """
        sel = self.merge_selectors(selectors)
        username = page.locator(sel["username"]).first
        await username.wait_for(state="visible", timeout=self.FIELD_TIMEOUT_MS)

        password_visible = await self.probe.is_visible(page, sel["password"])
        await username.fill(credentials.username)

        if password_visible:
            await page.locator(sel["password"]).first.fill(credentials.password)
            self.log.debug(f"[{self.idp_type.upper()}] Filled username and password (single-page flow)")
            return

        self.log.debug(f"[{self.idp_type.upper()}] Password field hidden, continuing two-step flow")
        await page.locator(sel["submit"]).first.click()
        password = page.locator(sel["password"]).first
        await password.wait_for(state="visible", timeout=self.FIELD_TIMEOUT_MS)
        await password.fill(credentials.password)
        self.log.debug(f"[{self.idp_type.upper()}] Filled password (two-step flow)")

    async def submit_form(self, page: Page, selectors: Optional[Mapping[str, str]] = None) -> None:
        sel = self.merge_selectors(selectors)
        await page.locator(sel["submit"]).first.click()
        await self._settle(page, self.SUBMIT_SETTLE_MS)
        await self._check_pending_password(page, sel["password"])
        self.log.debug(f"[{self.idp_type.upper()}] Form submitted")

    async def handle_mfa(
        self,
        page: Page,
        mfa_config: MFAConfig,
        role: str = "unknown",
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        if mfa_config.type == "totp":
            await self._submit_totp(page, mfa_config, role, env)
        elif mfa_config.type == "push":
            await self._wait_for_push_approval(page, mfa_config, role)
        else:
            self.log.warning(
                f"[{self.idp_type.upper()}] MFA type '{mfa_config.type}' not handled, skipping"
            )

    async def handle_post_login_prompts(
        self, page: Page, selectors: Optional[Mapping[str, str]] = None
    ) -> None:
        """Hook for interstitials shown after a successful login."""
        self.log.debug(f"[{self.idp_type.upper()}] No post-login prompt handling")

    async def get_error_message(self, page: Page) -> Optional[str]:
        """Return the text of a visible login error, if any."""
        return await self.probe.first_visible_text(page, self.ERROR_SELECTORS)

    # ── Shared internals ──────────────────────────────────────────

    async def _settle(self, page: Page, timeout_ms: int) -> None:
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeout:
            pass

    async def _check_pending_password(self, page: Page, password_selector: str) -> bool:
        """True if an empty password field is still showing after submit."""
        if not await self.probe.is_visible(page, password_selector, 1_000):
            return False
        try:
            value = await page.locator(password_selector).first.input_value()
        except PlaywrightError:
            # Submit navigated away while the field was being read.
            return False
        if not value:
            self.log.debug(f"[{self.idp_type.upper()}] Password field visible and empty after submit")
            return True
        return False

    async def _submit_totp(
        self,
        page: Page,
        mfa_config: MFAConfig,
        role: str,
        env: Optional[Mapping[str, str]],
    ) -> None:
        if not mfa_config.totp_secret_env:
            raise MfaError(
                "TOTP secret environment variable not configured",
                role=role,
                remediation="Set oidc.mfa.totp_secret_env to the variable holding the TOTP secret",
            )

        input_sel = mfa_config.totp_input_selector or self.DEFAULT_SELECTORS["totp_input"]
        submit_sel = mfa_config.totp_submit_selector or self.DEFAULT_SELECTORS["totp_submit"]

        field = page.locator(input_sel).first
        await field.wait_for(state="visible", timeout=self.FIELD_TIMEOUT_MS)

        await wait_for_fresh_window(sleep=self.sleep)
        try:
            code = generate_totp_code(mfa_config.totp_secret_env, env)
        except MfaError as e:
            e.role = role
            raise

        await field.fill(code)
        await page.locator(submit_sel).first.click()
        self.log.info(f"[{self.idp_type.upper()}] TOTP code submitted")

    def _push_timeout_message(self, timeout_ms: int) -> str:
        return f"Push MFA approval timeout after {timeout_ms}ms"

    async def _wait_for_push_approval(self, page: Page, mfa_config: MFAConfig, role: str) -> None:
        timeout_ms = mfa_config.push_timeout_ms
        self.log.info(f"[{self.idp_type.upper()}] Waiting up to {timeout_ms}ms for push approval")

        async def approved() -> bool:
            url = page.url.lower()
            return not any(marker in url for marker in self.PUSH_URL_MARKERS)

        if not await poll_until(approved, timeout_ms, self.PUSH_POLL_INTERVAL_MS):
            raise MfaError(
                self._push_timeout_message(timeout_ms),
                role=role,
                remediation="Approve the push notification on the enrolled device, or switch the account to TOTP",
            )
        self.log.info(f"[{self.idp_type.upper()}] Push approved")

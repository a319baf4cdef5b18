"""
Azure AD Handler
================
Microsoft identity platform login (login.microsoftonline.com).

Azure AD always splits login across two pages (email → Next → password)
and may finish with a "Stay signed in?" interstitial.
"""

from __future__ import annotations

from typing import Mapping, Optional

from playwright.async_api import Page

from ..config import MFAConfig
from ..credentials import Credentials
from .base import BaseIdpHandler

MFA_INDICATORS = [
    "#idTxtBx_SAOTCC_OTC",
    "#idDiv_SAOTCC_Description",
    ".verifyInput",
]


class AzureAdHandler(BaseIdpHandler):
    idp_type = "azure-ad"
    DEFAULT_SELECTORS = {
        "username": 'input[type="email"], input[name="loginfmt"], #i0116',
        "password": 'input[type="password"], input[name="passwd"], #i0118, #passwordInput',
        "submit": 'input[type="submit"], #idSIButton9',
        "stay_signed_in_no": '#idBtn_Back, input[value="No"]',
        "totp_input": 'input[name="otc"], #idTxtBx_SAOTCC_OTC',
        "totp_submit": 'input[type="submit"], #idSubmit_SAOTCC_Continue',
    }
    ERROR_SELECTORS = [
        "#usernameError",
        "#passwordError",
        ".error-text",
        "#errorMessage",
        ".alert-error",
    ]
    URL_MARKERS = ("login.microsoftonline.com", "login.live.com", "login.windows.net")

    SUBMIT_SETTLE_MS = 10_000
    STAY_SIGNED_IN_PROBE_MS = 3_000

    async def fill_credentials(
        self,
        page: Page,
        credentials: Credentials,
        selectors: Optional[Mapping[str, str]] = None,
    ) -> None:
        sel = self.merge_selectors(selectors)

        # ── Step 1: email ─────────────────────────────────────────
        await page.wait_for_selector(sel["username"], state="visible", timeout=self.FIELD_TIMEOUT_MS)
        await page.locator(sel["username"]).first.fill(credentials.username)
        await page.locator(sel["submit"]).first.click()
        self.log.debug("[AZURE-AD] Email submitted")

        # ── Step 2: password ──────────────────────────────────────
        await page.wait_for_selector(sel["password"], state="visible", timeout=self.FIELD_TIMEOUT_MS)
        await page.locator(sel["password"]).first.fill(credentials.password)
        self.log.debug("[AZURE-AD] Password filled")

    async def submit_form(self, page: Page, selectors: Optional[Mapping[str, str]] = None) -> None:
        sel = self.merge_selectors(selectors)
        await page.locator(sel["submit"]).first.click()
        await self._settle(page, self.SUBMIT_SETTLE_MS)

    async def has_mfa_prompt(self, page: Page, timeout_ms: int = 3_000) -> bool:
        return await self.probe.first_visible(page, MFA_INDICATORS, timeout_ms) is not None

    async def handle_mfa(
        self,
        page: Page,
        mfa_config: MFAConfig,
        role: str = "unknown",
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        if mfa_config.type == "totp" and not await self.has_mfa_prompt(page):
            # Remembered device: Azure skipped the verification page.
            self.log.info("[AZURE-AD] No verification code prompt shown, skipping TOTP")
            return
        await super().handle_mfa(page, mfa_config, role, env)

    async def handle_post_login_prompts(
        self, page: Page, selectors: Optional[Mapping[str, str]] = None
    ) -> None:
        """Answer "No" to the "Stay signed in?" prompt when it appears."""
        sel = self.merge_selectors(selectors)
        if await self.probe.is_visible(page, sel["stay_signed_in_no"], self.STAY_SIGNED_IN_PROBE_MS):
            await page.locator(sel["stay_signed_in_no"]).first.click()
            self.log.info("[AZURE-AD] Dismissed 'Stay signed in?' prompt")
            await self._settle(page, 5_000)

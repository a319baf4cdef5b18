"""
Keycloak Handler
================
Keycloak login theme (``#kc-login``), plus detection of "required action"
pages that a headless run cannot complete.
"""

from __future__ import annotations

from typing import Mapping, Optional

from playwright.async_api import Page

from ..errors import RequiredActionError
from .base import BaseIdpHandler

REQUIRED_ACTION_INDICATORS = [
    "#kc-update-password",
    "#kc-update-profile",
    "#kc-verify-email",
    ".required-action",
]


class KeycloakHandler(BaseIdpHandler):
    idp_type = "keycloak"
    DEFAULT_SELECTORS = {
        "username": '#username, input[name="username"], #kc-login input[name="username"]',
        "password": '#password, input[name="password"], #kc-login input[name="password"]',
        "submit": '#kc-login, button[type="submit"], input[type="submit"]',
        "totp_input": '#otp, input[name="otp"], input[name="totp"]',
        "totp_submit": 'button[type="submit"], input[type="submit"]',
    }
    ERROR_SELECTORS = [
        ".alert-error",
        ".kc-feedback-text",
        "#input-error",
        ".error-message",
    ]
    URL_MARKERS = ("keycloak", "/auth/realms/", "/realms/", "/protocol/openid-connect/")

    SUBMIT_SETTLE_MS = 3_000

    async def submit_form(self, page: Page, selectors: Optional[Mapping[str, str]] = None) -> None:
        sel = self.merge_selectors(selectors)
        await page.locator(sel["submit"]).first.click()
        await self._settle(page, self.SUBMIT_SETTLE_MS)
        if await self._check_pending_password(page, sel["password"]):
            self.log.warning("[KEYCLOAK] Password field still empty after submit, login may not have progressed")

    async def handle_post_login_prompts(
        self, page: Page, selectors: Optional[Mapping[str, str]] = None
    ) -> None:
        """Raise ``RequiredActionError`` if Keycloak shows a required-action page."""
        for indicator in REQUIRED_ACTION_INDICATORS:
            if await self.probe.is_visible(page, indicator, 1_000):
                self.log.error(f"[KEYCLOAK] Required action page detected: {indicator}")
                raise RequiredActionError(
                    f"Keycloak required action page detected: {indicator}. "
                    "Please complete required actions manually first.",
                    indicator=indicator,
                )

"""
Okta Handler
============
Classic Okta sign-in widget and Identity Engine (OIE) two-step pages.
Push approval is detected by the URL leaving ``/signin/verify`` and
``/mfa/``.
"""

from __future__ import annotations

from typing import Mapping, Optional

from playwright.async_api import Page

from ..config import MFAConfig
from ..errors import MfaError
from .base import BaseIdpHandler

FACTOR_LIST_SELECTORS = [
    ".factor-list",
    '[data-se="factor-list"]',
    ".authenticator-verify-list",
]


class OktaHandler(BaseIdpHandler):
    idp_type = "okta"
    DEFAULT_SELECTORS = {
        "username": '#okta-signin-username, input[name="identifier"], input[name="username"]',
        "password": '#okta-signin-password, input[name="credentials.passcode"], input[name="password"]',
        "submit": '#okta-signin-submit, input[type="submit"], button[type="submit"]',
        "totp_input": 'input[name="credentials.passcode"], input[name="answer"], #input-container input',
        "totp_submit": 'input[type="submit"], button[type="submit"]',
    }
    ERROR_SELECTORS = [
        ".okta-form-infobox-error",
        ".o-form-error-container",
        ".error-box",
        '[data-se="o-form-error-container"]',
    ]
    URL_MARKERS = (".okta.com", ".oktapreview.com")
    PUSH_URL_MARKERS = ("/signin/verify", "/mfa/")

    def _push_timeout_message(self, timeout_ms: int) -> str:
        return f"Okta Push MFA approval timeout after {timeout_ms}ms"

    async def is_factor_selection_required(self, page: Page) -> bool:
        return await self.probe.first_visible(page, FACTOR_LIST_SELECTORS) is not None

    async def handle_mfa(
        self,
        page: Page,
        mfa_config: MFAConfig,
        role: str = "unknown",
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        if mfa_config.type == "totp" and await self.is_factor_selection_required(page):
            raise MfaError(
                "Okta is asking to choose an MFA factor",
                role=role,
                remediation="Enroll only a TOTP authenticator for the test account, or make it the default factor",
            )
        await super().handle_mfa(page, mfa_config, role, env)

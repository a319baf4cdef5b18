"""
OIDC Provider
=============
Logs in through an external IdP using the phase-based flow engine and
the IdP handler registered for ``oidc.idp_type``.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..base_auth import BaseAuthProvider
from ..config import OIDCConfig, RetryOptions
from ..credentials import Credentials
from ..errors import AuthResult
from ..idp import BaseIdpHandler, get_idp_handler
from ..oidc_flow import execute_oidc_flow, is_oidc_session_valid
from ..probing import SelectorProbe

logger = logging.getLogger(__name__)

LOGOUT_PATHS = ["/logout", "/api/logout", "/auth/logout"]


class OIDCAuthProvider(BaseAuthProvider):
    provider_name = "OIDC"

    def __init__(
        self,
        config: OIDCConfig,
        role: str = "unknown",
        retry_options: Optional[RetryOptions] = None,
        probe: Optional[SelectorProbe] = None,
        env: Optional[Mapping[str, str]] = None,
        log: Optional[logging.Logger] = None,
    ):
        super().__init__(role, retry_options, probe, log or logger)
        self.config = config
        self.env = env
        self.handler: BaseIdpHandler = get_idp_handler(config.idp_type, self.probe, self.log)

    async def _attempt(self, page: Page, credentials: Credentials) -> AuthResult:
        return await execute_oidc_flow(
            page,
            self.config,
            credentials,
            handler=self.handler,
            role=self.role,
            env=self.env,
            probe=self.probe,
            log=self.log,
        )

    async def is_session_valid(self, page: Page) -> bool:
        """False while on the login page; otherwise check success indicators."""
        if self.config.login_url in page.url:
            return False
        return await is_oidc_session_valid(page, self.config, self.probe)

    async def refresh_session(self, page: Page) -> bool:
        """Reload the page; a redirect back to the login URL means expired."""
        try:
            await page.reload(wait_until="networkidle")
        except PlaywrightError as e:
            self.log.warning(f"{self.tag} Session refresh failed for role '{self.role}': {e}")
            return False
        if self.config.login_url in page.url:
            self.log.info(f"{self.tag} Session for role '{self.role}' expired (redirected to login)")
            return False
        return await self.is_session_valid(page)

    async def logout(self, page: Page) -> None:
        """Log out via the configured URL, then conventional endpoints.

        Cookies are always cleared at the end, even if logout fails.
        """
        logout = self.config.logout
        try:
            if logout is not None and logout.url:
                await page.goto(logout.url, wait_until="networkidle")
                if logout.idp_logout:
                    try:
                        await page.wait_for_load_state("networkidle", timeout=10_000)
                    except PlaywrightError:
                        self.log.debug(f"{self.tag} IdP logout did not settle")
                self.log.info(f"{self.tag} Logged out role '{self.role}' via {logout.url}")
            else:
                await self.try_logout_urls(page, LOGOUT_PATHS)
        except PlaywrightError as e:
            self.log.warning(f"{self.tag} Logout failed for role '{self.role}': {e}")
        finally:
            await page.context.clear_cookies()

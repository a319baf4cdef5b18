"""
Base Auth Provider (Abstract)
=============================
Defines the contract that ALL auth providers (OIDC, form, token, custom)
implement, and the retry envelope they share.

To add a new provider:
    1. Inherit from ``BaseAuthProvider``
    2. Implement ``_attempt``, ``is_session_valid`` and ``logout``
    3. Wire it into ``auth_factory.create_auth_provider``

Design principles:
    - One attempt returns an ``AuthResult``; exceptions never cross the
      retry boundary unclassified
    - Retry classification is one explicit function (``is_retryable``)
    - Session persistence is delegated to ``StorageStateStore``
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Pattern, Union
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .config import RetryOptions, SuccessConfig
from .credentials import Credentials
from .errors import PHASE_CALLBACK, PHASE_CREDENTIALS, AuthError, AuthResult
from .oidc_flow import url_matches as _url_matches
from .oidc_flow import wait_for_success
from .probing import SelectorProbe

logger = logging.getLogger(__name__)

DEFAULT_RETRY_OPTIONS = RetryOptions()

_TIMEOUT_MARKERS = ("timeout", "timed out")
_NETWORK_MARKERS = ("network", "net::", "econnrefused", "enotfound")


# ---------------------------------------------------------------------------
# Retry classification
# ---------------------------------------------------------------------------

def is_retryable(error: BaseException, options: RetryOptions = DEFAULT_RETRY_OPTIONS) -> bool:
    """Decide whether a failed attempt is worth repeating.

    Timeouts and network failures are transient.  Anything the IdP itself
    reported (wrong password, locked account) is not, and neither is
    anything else.
    """
    if isinstance(error, AuthError) and error.idp_response:
        return False

    message = str(getattr(error, "message", error)).lower()
    if options.retry_on_timeout and any(m in message for m in _TIMEOUT_MARKERS):
        return True
    if options.retry_on_network_error and any(m in message for m in _NETWORK_MARKERS):
        return True
    return False


def calculate_retry_delay(attempt: int, options: RetryOptions = DEFAULT_RETRY_OPTIONS) -> int:
    """Exponential backoff (ms) before retry number *attempt* (0-based)."""
    delay = options.initial_delay_ms * (options.backoff_multiplier ** attempt)
    return int(min(delay, options.max_delay_ms))


# ---------------------------------------------------------------------------
# Abstract Base Provider
# ---------------------------------------------------------------------------

class BaseAuthProvider(ABC):
    """Abstract base for all auth providers.

    Subclasses MUST implement:
        - ``_attempt(page, creds)``       one login attempt → ``AuthResult``
        - ``is_session_valid(page)``      is the page still authenticated?
        - ``logout(page)``                end the session

    and MAY override ``refresh_session(page)`` (default: not supported).
    """

    provider_name: str = "Auth"

    def __init__(
        self,
        role: str = "unknown",
        retry_options: Optional[RetryOptions] = None,
        probe: Optional[SelectorProbe] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.role = role
        self.retry_options = retry_options or RetryOptions()
        self.probe = probe or SelectorProbe()
        self.log = log or logger
        self.last_result: Optional[AuthResult] = None

    @property
    def tag(self) -> str:
        return f"[{self.provider_name.upper()}]"

    # ── Login with retry ──────────────────────────────────────────

    async def login(self, page: Page, credentials: Credentials) -> AuthResult:
        """Log in, retrying transient failures with exponential backoff.

        Runs at most ``max_retries + 1`` attempts.

        Raises:
            AuthError: the attempt's own error if it is not retryable, or a
                       consolidated "login failed after N attempts" error.
        """
        opts = self.retry_options
        attempts = opts.max_retries + 1
        last_error: Optional[AuthError] = None

        for attempt in range(attempts):
            result = await self._guarded_attempt(page, credentials)
            self.last_result = result
            if result.success:
                if attempt:
                    self.log.info(f"{self.tag} Login for role '{self.role}' succeeded on attempt {attempt + 1}")
                return result

            last_error = result.error
            if not is_retryable(last_error, opts):
                raise last_error

            if attempt < attempts - 1:
                delay = calculate_retry_delay(attempt, opts)
                self.log.warning(
                    f"{self.tag} Attempt {attempt + 1}/{attempts} for role '{self.role}' "
                    f"failed ({last_error.message}), retrying in {delay}ms"
                )
                await self._sleep(delay)

        noun = "attempt" if attempts == 1 else "attempts"
        raise AuthError(
            f"{self.provider_name} login failed after {attempts} {noun}: {last_error.message}",
            role=self.role,
            phase=last_error.phase,
            idp_response=last_error.idp_response,
            remediation=(
                f'Verify credentials for role "{self.role}" are correct. '
                f"Check {self.provider_name} configuration and IdP status."
            ),
        )

    async def _guarded_attempt(self, page: Page, credentials: Credentials) -> AuthResult:
        """Run ``_attempt`` and turn stray exceptions into a failed result."""
        try:
            result = await self._attempt(page, credentials)
        except AuthError as e:
            result = AuthResult(success=False, final_url=page.url, phase=e.phase, error=e)
        except PlaywrightError as e:
            result = AuthResult(
                success=False,
                final_url=page.url,
                phase=PHASE_CALLBACK,
                error=AuthError(str(e), role=self.role, phase=PHASE_CALLBACK),
            )
        except Exception as e:
            # OS, socket or custom-hook failures; classified by message like the rest.
            self.log.debug(f"{self.tag} Attempt raised {type(e).__name__}: {e}")
            result = AuthResult(
                success=False,
                final_url=page.url,
                phase=PHASE_CREDENTIALS,
                error=AuthError(f"{type(e).__name__}: {e}", role=self.role, phase=PHASE_CREDENTIALS),
            )
        if not result.success and result.error is None:
            result.error = AuthError("Login attempt failed", role=self.role, phase=result.phase)
        if result.error is not None and result.error.role == "unknown":
            result.error.role = self.role
        return result

    async def _sleep(self, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)

    # ── Contract ──────────────────────────────────────────────────

    @abstractmethod
    async def _attempt(self, page: Page, credentials: Credentials) -> AuthResult:
        """Perform one login attempt; report failure through the result."""
        ...

    @abstractmethod
    async def is_session_valid(self, page: Page) -> bool:
        ...

    @abstractmethod
    async def logout(self, page: Page) -> None:
        ...

    async def refresh_session(self, page: Page) -> bool:
        """Try to extend the session in place.  Not supported by default."""
        return False

    # ── Page helpers (shared by providers) ────────────────────────

    async def fill_field(self, page: Page, selector: str, value: str, timeout_ms: int = 10_000) -> None:
        """Wait for a field, clear it, then fill it."""
        field = page.locator(selector).first
        await field.wait_for(state="visible", timeout=timeout_ms)
        await field.clear()
        await field.fill(value)

    async def click_element(self, page: Page, selector: str, timeout_ms: int = 10_000) -> None:
        element = page.locator(selector).first
        await element.wait_for(state="visible", timeout=timeout_ms)
        await element.click()

    async def is_element_visible(self, page: Page, selector: str, timeout_ms: Optional[int] = None) -> bool:
        return await self.probe.is_visible(page, selector, timeout_ms)

    def url_matches(self, url: str, pattern: Union[str, Pattern[str], None]) -> bool:
        return _url_matches(url, pattern)

    async def wait_for_login_success(
        self,
        page: Page,
        url_pattern: Union[str, Pattern[str], None] = None,
        selector: Optional[str] = None,
        timeout_ms: int = 5_000,
    ) -> bool:
        """Wait for a success URL and/or selector.  Never raises.

        With both given, whichever appears first wins.  With neither,
        waits for network idle and reports success.
        """
        if isinstance(url_pattern, str):
            success = SuccessConfig(url=url_pattern, selector=selector)
        else:
            success = SuccessConfig(url_regex=url_pattern, selector=selector)
        try:
            await wait_for_success(page, success, timeout_ms)
        except PlaywrightError as e:
            self.log.debug(f"{self.tag} Success indicators not reached: {e}")
            return False
        return True

    async def try_logout_urls(self, page: Page, paths: List[str], timeout_ms: int = 5_000) -> bool:
        """Visit conventional logout endpoints on the page's origin.

        Returns True on the first one that answers with an OK status.
        """
        parsed = urlparse(page.url)
        if not parsed.scheme or not parsed.netloc:
            return False
        origin = f"{parsed.scheme}://{parsed.netloc}"
        for path in paths:
            try:
                response = await page.goto(f"{origin}{path}", timeout=timeout_ms)
            except PlaywrightError:
                continue
            if response is not None and response.ok:
                self.log.info(f"{self.tag} Logged out via {path}")
                return True
        return False

"""
Custom Provider
===============
Base class for application-specific login logic.  Subclasses supply the
three ``perform_*``/``check_*`` hooks; retries and logging come from
``BaseAuthProvider``.

Wire a subclass in through the auth config::

    custom:
      factory: my_harness.auth:SsoShortcutProvider
      options: {api_key_env: SSO_KEY}
"""

from __future__ import annotations

import importlib
import logging
import time as _time
from abc import abstractmethod
from typing import Any, Callable, Dict, Optional

from playwright.async_api import Page

from ..base_auth import BaseAuthProvider
from ..config import CustomAuthConfig, RetryOptions
from ..credentials import Credentials
from ..errors import PHASE_CALLBACK, AuthResult
from ..probing import SelectorProbe

logger = logging.getLogger(__name__)


class CustomAuthProvider(BaseAuthProvider):
    provider_name = "Custom"

    def __init__(
        self,
        role: str = "unknown",
        options: Optional[Dict[str, Any]] = None,
        retry_options: Optional[RetryOptions] = None,
        probe: Optional[SelectorProbe] = None,
        log: Optional[logging.Logger] = None,
    ):
        super().__init__(role, retry_options, probe, log or logger)
        self.options = dict(options or {})

    @abstractmethod
    async def perform_login(self, page: Page, credentials: Credentials) -> None:
        """Log in; raise ``AuthError`` (or a Playwright error) on failure."""
        ...

    @abstractmethod
    async def check_session_validity(self, page: Page) -> bool:
        ...

    @abstractmethod
    async def perform_logout(self, page: Page) -> None:
        ...

    async def _attempt(self, page: Page, credentials: Credentials) -> AuthResult:
        start = _time.monotonic()
        await self.perform_login(page, credentials)
        duration = int((_time.monotonic() - start) * 1000)
        self.log.info(f"{self.tag} Login succeeded for role '{self.role}' in {duration}ms")
        return AuthResult(success=True, final_url=page.url, duration_ms=duration, phase=PHASE_CALLBACK)

    async def is_session_valid(self, page: Page) -> bool:
        return await self.check_session_validity(page)

    async def logout(self, page: Page) -> None:
        await self.perform_logout(page)
        self.log.info(f"{self.tag} Logged out role '{self.role}'")


def load_custom_factory(path: str) -> Callable[..., CustomAuthProvider]:
    """Resolve a ``module:attr`` import path.

    Raises:
        ValueError: If the path is malformed or cannot be imported.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Custom provider factory must look like 'module:attr', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import custom provider module {module_name!r}: {e}") from e
    try:
        return getattr(module, attr)
    except AttributeError as e:
        raise ValueError(f"Module {module_name!r} has no attribute {attr!r}") from e


def create_custom_provider(
    config: CustomAuthConfig,
    role: str,
    retry_options: Optional[RetryOptions] = None,
    probe: Optional[SelectorProbe] = None,
    log: Optional[logging.Logger] = None,
) -> CustomAuthProvider:
    factory = load_custom_factory(config.factory)
    provider = factory(role=role, options=config.options, retry_options=retry_options, probe=probe, log=log)
    if not isinstance(provider, BaseAuthProvider):
        raise ValueError(f"Custom provider factory {config.factory!r} did not return an auth provider")
    return provider

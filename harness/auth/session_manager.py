"""
Session Manager
===============
Caller-side orchestration: hand back a reusable session for a role,
logging in only when the saved one is missing or stale.

Lifecycle::

    1. ``prepare()``
       → one-off sweep of state files older than 24h.

    2. ``preflight(roles)``
       → fails fast (before any browser work) if credentials are missing.

    3. ``ensure_session(browser, role)``
       → valid saved state? return its path, no login.
       → otherwise resolve credentials, log in on a fresh context,
         save the state and return its path.

At most one login per role is in flight at a time; different roles may
log in concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from playwright.async_api import Browser

from .auth_factory import create_auth_provider
from .config import AuthConfig
from .credentials import format_missing_credentials, resolve_credentials, validate_credentials
from .errors import PHASE_CREDENTIALS, AuthError
from .session_store import CleanupResult, StorageStateOptions, StorageStateStore

logger = logging.getLogger(__name__)


class SessionManager:
    """Reuse-or-login per role on top of ``StorageStateStore``."""

    def __init__(
        self,
        auth_config: AuthConfig,
        *,
        project_root: Union[str, Path, None] = None,
        environment: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        store: Optional[StorageStateStore] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            auth_config:  Loaded auth configuration.
            project_root: Root the state directory is relative to (default CWD).
            environment:  Value substituted for ``{env}`` in the file pattern.
            env:          Environment mapping for credentials (default ``os.environ``).
            store:        Pre-built store (otherwise built from the config).
        """
        self.auth_config = auth_config
        self.env = env
        self.log = log or logger
        self.store = store or StorageStateStore(
            StorageStateOptions.from_config(auth_config.storage_state, project_root, environment),
            log=self.log,
        )
        self._locks: Dict[str, asyncio.Lock] = {}

    # ── Public API ────────────────────────────────────────────────

    def prepare(self) -> CleanupResult:
        """Sweep state files older than 24 hours."""
        result = self.store.cleanup_expired()
        for error in result.errors:
            self.log.warning(f"[SESSION] Could not remove {error['path']}: {error['message']}")
        return result

    def preflight(self, roles: Optional[List[str]] = None) -> None:
        """Check credentials for *roles* (default: all) before any login.

        Raises:
            AuthError: (phase ``credentials``) listing every missing variable.
        """
        roles = roles if roles is not None else list(self.auth_config.roles)
        missing = validate_credentials(roles, self.auth_config, self.env)
        if missing:
            report = format_missing_credentials(missing)
            self.log.error(f"[SESSION] Pre-flight failed:\n{report}")
            raise AuthError(
                report,
                role=missing[0].role if len({m.role for m in missing}) == 1 else "unknown",
                phase=PHASE_CREDENTIALS,
                remediation="Export the listed variables (or add them to .env) and rerun",
            )
        self.log.info(f"[SESSION] Pre-flight passed for {len(roles)} role(s)")

    async def ensure_session(self, browser: Browser, role: str, force_login: bool = False) -> Path:
        """Return the path of a valid saved session for *role*.

        Args:
            browser:     Browser used to create a fresh context if login is needed.
            role:        Role to authenticate.
            force_login: Ignore any saved state and log in again.

        Raises:
            AuthError:         Login failed (after retries where applicable).
            StorageStateError: The new state could not be saved.
        """
        lock = self._locks.setdefault(role, asyncio.Lock())
        async with lock:
            if not force_login:
                path = self.store.load(role)
                if path is not None:
                    return path
            else:
                self.log.info(f"[SESSION] force_login=True, ignoring saved session for '{role}'")

            return await self._login_and_save(browser, role)

    # ── Internal ──────────────────────────────────────────────────

    async def _login_and_save(self, browser: Browser, role: str) -> Path:
        credentials = resolve_credentials(role, self.auth_config, self.env, log=self.log)
        provider = create_auth_provider(self.auth_config, role, self.env, self.log)

        context = await browser.new_context()
        try:
            page = await context.new_page()
            result = await provider.login(page, credentials)
            self.log.info(
                f"[SESSION] Role '{role}' authenticated in {result.duration_ms}ms "
                f"({result.final_url[:80]})"
            )
            return await self.store.save(context, role)
        finally:
            await context.close()

"""
Token Provider
==============
API-first login: POST the role's credentials to a token endpoint, then
park the returned token in the page's ``localStorage`` so the
application (and the saved storage state) picks it up.  localStorage is
per-origin, so the page is moved to ``app_url`` first when one is set.

Stored record (JSON under ``TOKEN_STORAGE_KEY``)::

    {"token": "...", "headerName": "Authorization",
     "headerPrefix": "Bearer ", "timestamp": 1718000000000}
"""

from __future__ import annotations

import asyncio
import json
import logging
import time as _time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import aiohttp
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..base_auth import BaseAuthProvider
from ..config import RetryOptions, TokenAuthConfig
from ..credentials import Credentials
from ..errors import PHASE_CALLBACK, PHASE_CREDENTIALS, PHASE_NAVIGATION, AuthError, AuthResult
from ..probing import SelectorProbe

logger = logging.getLogger(__name__)

TOKEN_STORAGE_KEY = "harness_auth_token"
APP_NAVIGATION_TIMEOUT_MS = 30_000


async def get_stored_token(page: Page) -> Optional[Dict[str, Any]]:
    """Return the token record stored in the page's localStorage, if any."""
    raw = await page.evaluate(f"() => window.localStorage.getItem({json.dumps(TOKEN_STORAGE_KEY)})")
    if not raw:
        return None
    try:
        record = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return record if isinstance(record, dict) and record.get("token") else None


class TokenAuthProvider(BaseAuthProvider):
    provider_name = "Token"

    def __init__(
        self,
        config: TokenAuthConfig,
        role: str = "unknown",
        retry_options: Optional[RetryOptions] = None,
        probe: Optional[SelectorProbe] = None,
        log: Optional[logging.Logger] = None,
    ):
        super().__init__(role, retry_options, probe, log or logger)
        self.config = config
        self.token: Optional[str] = None

    # ── HTTP ──────────────────────────────────────────────────────

    def build_request_body(self, credentials: Credentials) -> Dict[str, Any]:
        body_cfg = self.config.request_body
        body: Dict[str, Any] = dict(body_cfg.additional_fields)
        body[body_cfg.username_field] = credentials.username
        body[body_cfg.password_field] = credentials.password
        return body

    async def _post_token_request(self, body: Dict[str, Any]) -> Tuple[int, str]:
        """POST *body* as JSON; return ``(status, response text)``."""
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_ms / 1000)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.config.token_endpoint, json=body) as resp:
                return resp.status, await resp.text()

    async def _request_token(self, credentials: Credentials) -> str:
        cfg = self.config
        try:
            status, text = await self._post_token_request(self.build_request_body(credentials))
        except asyncio.TimeoutError as e:
            raise AuthError(
                f"Token request timeout after {cfg.timeout_ms}ms",
                role=self.role,
                phase=PHASE_NAVIGATION,
                remediation=f"Verify the token endpoint is reachable: {cfg.token_endpoint}",
            ) from e
        except aiohttp.ClientError as e:
            raise AuthError(
                f"Token request network error: {e}",
                role=self.role,
                phase=PHASE_NAVIGATION,
                remediation=f"Verify the token endpoint is reachable: {cfg.token_endpoint}",
            ) from e

        if status >= 400:
            raise AuthError(
                f"Token request failed: HTTP {status}: {text[:200]}",
                role=self.role,
                phase=PHASE_CREDENTIALS,
                idp_response=f"HTTP {status}",
                remediation=f'Verify credentials for role "{self.role}" and the token endpoint',
            )

        try:
            payload = json.loads(text)
        except ValueError as e:
            raise AuthError(
                "Token response is not valid JSON",
                role=self.role,
                phase=PHASE_CALLBACK,
            ) from e

        token = payload.get(cfg.token_field) if isinstance(payload, dict) else None
        if not token:
            raise AuthError(
                f"Token not found in response (expected field: {cfg.token_field})",
                role=self.role,
                phase=PHASE_CALLBACK,
                remediation="Set token.token_field to the response field holding the token",
            )
        return str(token)

    # ── Provider contract ─────────────────────────────────────────

    async def _open_app_origin(self, page: Page) -> None:
        """Put the page on an http(s) origin that can hold the token."""
        app_url = self.config.app_url
        if app_url:
            try:
                await page.goto(app_url, wait_until="domcontentloaded", timeout=APP_NAVIGATION_TIMEOUT_MS)
            except PlaywrightError as e:
                raise AuthError(
                    f"Failed to open application URL {app_url}: {e}",
                    role=self.role,
                    phase=PHASE_NAVIGATION,
                ) from e

        if urlparse(page.url).scheme not in ("http", "https"):
            raise AuthError(
                f"Token provider needs an http(s) page to store the token (current page: {page.url})",
                role=self.role,
                phase=PHASE_NAVIGATION,
                remediation="Set token.app_url to the application URL",
            )

    async def _attempt(self, page: Page, credentials: Credentials) -> AuthResult:
        start = _time.monotonic()
        await self._open_app_origin(page)
        token = await self._request_token(credentials)

        record = {
            "token": token,
            "headerName": self.config.header_name,
            "headerPrefix": self.config.header_prefix,
            "timestamp": int(_time.time() * 1000),
        }
        await page.evaluate(
            "([key, value]) => window.localStorage.setItem(key, value)",
            [TOKEN_STORAGE_KEY, json.dumps(record)],
        )
        self.token = token

        duration = int((_time.monotonic() - start) * 1000)
        self.log.info(f"{self.tag} Token acquired for role '{self.role}' in {duration}ms")
        return AuthResult(success=True, final_url=page.url, duration_ms=duration, phase=PHASE_CALLBACK)

    async def is_session_valid(self, page: Page) -> bool:
        return await get_stored_token(page) is not None

    async def logout(self, page: Page) -> None:
        await page.evaluate(f"() => window.localStorage.removeItem({json.dumps(TOKEN_STORAGE_KEY)})")
        self.token = None
        self.log.info(f"{self.tag} Token removed for role '{self.role}'")

    # ── Header helpers ────────────────────────────────────────────

    def get_auth_header(self) -> Optional[str]:
        """Full header value (prefix + token) or None before login."""
        if not self.token:
            return None
        return f"{self.config.header_prefix}{self.token}"

    def get_header_name(self) -> str:
        return self.config.header_name

"""
Selector Probing
================
Bounded polling primitives used for every "is it visible?" question the
auth engine asks of a page.

Playwright's ``is_visible()`` answers immediately; login pages render
their error banners and prompts a few hundred milliseconds late.  A
``SelectorProbe`` re-asks until a monotonic deadline instead, so the
wait is explicit and configurable (``AuthConfig.probe``).
"""

from __future__ import annotations

import asyncio
import logging
import time as _time
from typing import Awaitable, Callable, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .config import ProbeSettings

logger = logging.getLogger(__name__)


async def poll_until(
    condition: Callable[[], Awaitable[bool]],
    timeout_ms: int,
    poll_interval_ms: int = 100,
) -> bool:
    """Re-evaluate *condition* until it is true or the deadline passes.

    Always evaluates at least once.
    """
    deadline = _time.monotonic() + timeout_ms / 1000
    while True:
        if await condition():
            return True
        if _time.monotonic() >= deadline:
            return False
        await asyncio.sleep(poll_interval_ms / 1000)


class SelectorProbe:
    """Polls a page for element visibility within a fixed budget."""

    def __init__(self, timeout_ms: int = 500, poll_interval_ms: int = 100):
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms

    @classmethod
    def from_settings(cls, settings: Optional[ProbeSettings]) -> "SelectorProbe":
        settings = settings or ProbeSettings()
        return cls(settings.timeout_ms, settings.poll_interval_ms)

    async def _visible_now(self, page: Page, selector: str) -> bool:
        try:
            return await page.locator(selector).first.is_visible()
        except PlaywrightError:
            # Detached frames and mid-navigation evaluation errors.
            return False

    async def is_visible(self, page: Page, selector: str, timeout_ms: Optional[int] = None) -> bool:
        budget = self.timeout_ms if timeout_ms is None else timeout_ms
        return await poll_until(
            lambda: self._visible_now(page, selector), budget, self.poll_interval_ms
        )

    async def first_visible(
        self, page: Page, selectors: List[str], timeout_ms: Optional[int] = None
    ) -> Optional[str]:
        """Return the first selector (in priority order) that becomes visible."""
        for selector in selectors:
            if await self.is_visible(page, selector, timeout_ms):
                return selector
        return None

    async def first_visible_text(
        self, page: Page, selectors: List[str], timeout_ms: Optional[int] = None
    ) -> Optional[str]:
        """Return the stripped text of the first visible, non-empty match."""
        for selector in selectors:
            if not await self.is_visible(page, selector, timeout_ms):
                continue
            try:
                text = await page.locator(selector).first.text_content()
            except PlaywrightError:
                continue
            if text and text.strip():
                return text.strip()
        return None

"""
Shared fixtures: an in-memory stand-in for Playwright's Page / Locator /
BrowserContext / Browser, scripted per test.

Selectors are matched literally.  A comma-joined selector list matches if
any of its parts is currently visible, which mirrors how the IdP selector
tables are written.
"""

import json
import re
from urllib.parse import urlsplit

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from harness.auth.config import AuthConfig
from harness.auth.probing import SelectorProbe


def _parts(selector):
    return [p.strip() for p in selector.split(",") if p.strip()]


class FakeResponse:
    def __init__(self, ok=True):
        self.ok = ok


class FakeLocator:
    def __init__(self, page, selector):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    def _match(self):
        return self.page.match(self.selector)

    async def is_visible(self):
        return self._match() is not None

    async def wait_for(self, state="visible", timeout=None):
        if self._match() is None:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {self.selector}")

    async def fill(self, value):
        await self.wait_for()
        part = self._match()
        self.page.values[part] = value
        self.page.actions.append(("fill", part))

    async def clear(self):
        await self.wait_for()
        self.page.values[self._match()] = ""

    async def click(self):
        await self.wait_for()
        part = self._match()
        self.page.actions.append(("click", part))
        callback = self.page.on_click.get(part)
        if callback is not None:
            callback(self.page)

    async def input_value(self):
        if self.page.input_value_error is not None:
            raise self.page.input_value_error
        return self.page.values.get(self._match(), "")

    async def text_content(self):
        return self.page.texts.get(self._match(), "")


class FakeContext:
    def __init__(self, cookies=None):
        self.cookies = list(cookies or [])
        self.closed = False
        self.cleared = False
        self.pages = []
        self.save_error = None

    async def new_page(self):
        page = FakePage(context=self)
        self.pages.append(page)
        return page

    def _origins(self):
        origins = []
        for page in self.pages:
            parsed = urlsplit(page.url)
            if page.local_storage and parsed.scheme in ("http", "https"):
                origins.append({
                    "origin": f"{parsed.scheme}://{parsed.netloc}",
                    "localStorage": [{"name": k, "value": v} for k, v in page.local_storage.items()],
                })
        return origins

    async def storage_state(self, path=None):
        if self.save_error is not None:
            raise self.save_error
        state = {"cookies": self.cookies, "origins": self._origins()}
        if path is not None:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(state, f)
        return state

    async def clear_cookies(self):
        self.cookies = []
        self.cleared = True

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self):
        self.contexts = []

    async def new_context(self, **kwargs):
        context = FakeContext(cookies=[{"name": "sid", "value": "x", "domain": "app.test"}])
        self.contexts.append(context)
        return context


class FakePage:
    """Scriptable page.

    Attributes tests poke at:
        visible:     selectors currently visible
        texts:       selector → text_content
        redirects:   goto URL → URL the page ends up on
        goto_errors: exceptions raised by successive ``goto`` calls
        on_click:    selector → callable(page) run after a click
        on_reload:   callable(page) run on ``reload``
        local_storage:      localStorage, only reachable on http(s) URLs
        input_value_error:  raised by ``input_value`` when set
    """

    def __init__(self, url="about:blank", context=None):
        self.url = url
        self.context = context or FakeContext()
        self.visible = set()
        self.texts = {}
        self.values = {}
        self.actions = []
        self.redirects = {}
        self.goto_errors = []
        self.goto_status = {}
        self.on_click = {}
        self.on_reload = None
        self.local_storage = {}
        self.input_value_error = None

    def match(self, selector):
        if selector in self.visible:
            return selector
        for part in _parts(selector):
            if part in self.visible:
                return part
        return None

    def locator(self, selector):
        return FakeLocator(self, selector)

    def filled(self, selector):
        return self.values.get(selector)

    def clicked(self, selector):
        return ("click", selector) in self.actions

    async def goto(self, url, wait_until=None, timeout=None):
        self.actions.append(("goto", url))
        if self.goto_errors:
            error = self.goto_errors.pop(0)
            if error is not None:
                raise error
        self.url = self.redirects.get(url, url)
        return FakeResponse(self.goto_status.get(url, True))

    async def wait_for_url(self, url, timeout=None):
        matched = url(self.url) if callable(url) else (url == self.url)
        if not matched:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for URL")

    async def wait_for_selector(self, selector, state="visible", timeout=None):
        if self.match(selector) is None:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return FakeLocator(self, selector)

    async def wait_for_load_state(self, state="load", timeout=None):
        self.actions.append(("load_state", state))

    async def reload(self, wait_until=None):
        self.actions.append(("reload", self.url))
        if self.on_reload is not None:
            self.on_reload(self)

    async def evaluate(self, script, arg=None):
        if "localStorage" in script and urlsplit(self.url).scheme not in ("http", "https"):
            raise PlaywrightError(
                "SecurityError: Failed to read the 'localStorage' property from 'Window': "
                "Access is denied for this document."
            )
        if "setItem" in script:
            key, value = arg
            self.local_storage[key] = value
            return None
        key_match = re.search(r"(?:getItem|removeItem)\((\".*?\")\)", script)
        key = json.loads(key_match.group(1)) if key_match else None
        if "getItem" in script:
            return self.local_storage.get(key)
        if "removeItem" in script:
            self.local_storage.pop(key, None)
        return None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def browser():
    return FakeBrowser()


@pytest.fixture
def fast_probe():
    """Single-shot visibility checks (no polling delay)."""
    return SelectorProbe(timeout_ms=0, poll_interval_ms=1)


@pytest.fixture
def auth_env():
    return {
        "ADMIN_USER": "admin@example.com",
        "ADMIN_PASS": "s3cret-pass",
        "VIEWER_USER": "viewer@example.com",
        "VIEWER_PASS": "viewer-pass",
    }


@pytest.fixture
def auth_config_dict():
    return {
        "provider": "oidc",
        "roles": {
            "admin": {
                "credentials_env": {"username": "ADMIN_USER", "password": "ADMIN_PASS"},
                "description": "Full access",
            },
            "viewer": {
                "credentials_env": {"username": "VIEWER_USER", "password": "VIEWER_PASS"},
            },
        },
        "oidc": {
            "idp_type": "keycloak",
            "login_url": "https://app.test/login",
            "success": {"url": "/dashboard"},
        },
        "retry": {"max_retries": 2},
        "probe": {"timeout_ms": 0, "poll_interval_ms": 1},
    }


@pytest.fixture
def auth_config(auth_config_dict):
    return AuthConfig.from_dict(auth_config_dict)

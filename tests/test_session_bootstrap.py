"""
Tests for the session bootstrap composition root (Playwright stubbed out).
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from harness.auth import session_bootstrap
from harness.auth.errors import AuthError, AuthResult

from conftest import FakeBrowser

AUTH_YAML = """\
auth:
  provider: oidc
  roles:
    admin:
      credentials_env: {username: ADMIN_USER, password: ADMIN_PASS}
    viewer:
      credentials_env: {username: VIEWER_USER, password: VIEWER_PASS}
  oidc:
    login_url: https://app.test/login
    success: {url: /dashboard}
"""


class ClosableBrowser(FakeBrowser):
    def __init__(self):
        super().__init__()
        self.closed = False

    async def close(self):
        self.closed = True


class FakePlaywright:
    def __init__(self, browser):
        self.chromium = MagicMock()
        self.chromium.launch = AsyncMock(return_value=browser)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "harness.yaml"
    path.write_text(AUTH_YAML)
    return path


@pytest.fixture
def stubbed(monkeypatch):
    browser = ClosableBrowser()
    playwright = FakePlaywright(browser)
    provider = MagicMock()
    provider.login = AsyncMock(return_value=AuthResult(success=True, final_url="https://app.test/dashboard"))
    dotenv = MagicMock()

    monkeypatch.setattr(session_bootstrap, "async_playwright", lambda: playwright)
    monkeypatch.setattr(session_bootstrap, "load_dotenv", dotenv)
    monkeypatch.setattr("harness.auth.session_manager.create_auth_provider", lambda *a, **k: provider)
    return browser, playwright, provider, dotenv


class TestBootstrapSessions:
    @pytest.mark.asyncio
    async def test_every_role_gets_a_state(self, config_path, tmp_path, stubbed, monkeypatch):
        browser, playwright, provider, dotenv = stubbed
        for name, value in {"ADMIN_USER": "a", "ADMIN_PASS": "b", "VIEWER_USER": "c", "VIEWER_PASS": "d"}.items():
            monkeypatch.setenv(name, value)

        paths = await session_bootstrap.bootstrap_sessions(
            config_path, project_root=tmp_path, dotenv_path=tmp_path / ".env",
        )

        assert set(paths) == {"admin", "viewer"}
        assert all(p.exists() for p in paths.values())
        assert provider.login.await_count == 2
        assert browser.closed
        dotenv.assert_called_once_with(tmp_path / ".env")
        assert playwright.chromium.launch.await_args.kwargs["headless"] is True

    @pytest.mark.asyncio
    async def test_missing_credentials_stop_before_launch(self, config_path, tmp_path, stubbed, monkeypatch):
        _, playwright, provider, _ = stubbed
        for name in ("ADMIN_USER", "ADMIN_PASS", "VIEWER_USER", "VIEWER_PASS"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(AuthError) as exc:
            await session_bootstrap.bootstrap_sessions(config_path, roles=["admin"], project_root=tmp_path)

        assert "ADMIN_USER" in exc.value.message
        playwright.chromium.launch.assert_not_awaited()
        provider.login.assert_not_awaited()


class TestConfigureLogging:
    def test_format(self, monkeypatch):
        basic_config = MagicMock()
        monkeypatch.setattr(logging, "basicConfig", basic_config)
        session_bootstrap.configure_logging("DEBUG")
        basic_config.assert_called_once_with(
            level="DEBUG",
            format="%(asctime)s | %(levelname)s | %(message)s",
            datefmt="%H:%M:%S",
        )

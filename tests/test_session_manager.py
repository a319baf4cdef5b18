"""
Tests for the reuse-or-login session manager.
"""

import asyncio
import json
import os
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from harness.auth.config import AuthConfig
from harness.auth.errors import AuthError, AuthResult
from harness.auth.providers import TOKEN_STORAGE_KEY, TokenAuthProvider
from harness.auth.session_manager import SessionManager

MINUTE_MS = 60_000


def _age_file(path, age_ms):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"cookies": [], "origins": []}))
    mtime_ns = (time.time_ns() // 1_000_000 - age_ms) * 1_000_000
    os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


@pytest.fixture
def provider(monkeypatch):
    fake = MagicMock()
    fake.login = AsyncMock(return_value=AuthResult(
        success=True, final_url="https://app.test/dashboard", duration_ms=42,
    ))
    monkeypatch.setattr("harness.auth.session_manager.create_auth_provider", lambda *args, **kwargs: fake)
    return fake


@pytest.fixture
def manager(auth_config, auth_env, tmp_path):
    return SessionManager(auth_config, project_root=tmp_path, env=auth_env)


# ====================================================================
# 1. Reuse or login
# ====================================================================

class TestEnsureSession:
    @pytest.mark.asyncio
    async def test_fresh_state_is_reused_without_login(self, manager, browser, provider):
        path = _age_file(manager.store.get_path("admin"), 10 * MINUTE_MS)

        assert await manager.ensure_session(browser, "admin") == path
        assert browser.contexts == []
        provider.login.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_state_triggers_login_and_save(self, manager, browser, provider):
        path = await manager.ensure_session(browser, "admin")

        assert path == manager.store.get_path("admin")
        assert json.loads(path.read_text())["cookies"][0]["name"] == "sid"
        assert len(browser.contexts) == 1
        assert browser.contexts[0].closed

        page, creds = provider.login.await_args.args
        assert creds.username == "admin@example.com"
        assert page.context is browser.contexts[0]

    @pytest.mark.asyncio
    async def test_stale_state_triggers_login(self, manager, browser, provider):
        _age_file(manager.store.get_path("admin"), 61 * MINUTE_MS)
        await manager.ensure_session(browser, "admin")
        provider.login.assert_awaited_once()
        assert manager.store.is_valid("admin")

    @pytest.mark.asyncio
    async def test_force_login_ignores_fresh_state(self, manager, browser, provider):
        _age_file(manager.store.get_path("admin"), MINUTE_MS)
        await manager.ensure_session(browser, "admin", force_login=True)
        provider.login.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_same_role_logs_in_once(self, manager, browser, provider):
        first, second = await asyncio.gather(
            manager.ensure_session(browser, "admin"),
            manager.ensure_session(browser, "admin"),
        )
        assert first == second
        assert provider.login.await_count == 1
        assert len(browser.contexts) == 1

    @pytest.mark.asyncio
    async def test_login_failure_closes_context_and_saves_nothing(self, manager, browser, provider):
        provider.login.side_effect = AuthError("OIDC login failed after 3 attempts: Timeout", role="admin")

        with pytest.raises(AuthError):
            await manager.ensure_session(browser, "admin")

        assert browser.contexts[0].closed
        assert not manager.store.get_path("admin").exists()

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_before_browser(self, auth_config, tmp_path, browser, provider):
        manager = SessionManager(auth_config, project_root=tmp_path, env={})
        with pytest.raises(AuthError) as exc:
            await manager.ensure_session(browser, "admin")
        assert "ADMIN_USER" in exc.value.message
        assert browser.contexts == []


class TestTokenSessions:
    @pytest.fixture
    def token_config_dict(self, auth_config_dict):
        auth_config_dict["provider"] = "token"
        auth_config_dict["token"] = {"token_endpoint": "https://api.test/oauth/token", "app_url": "https://app.test/"}
        return auth_config_dict

    @pytest.mark.asyncio
    async def test_token_lands_in_saved_origins(self, token_config_dict, auth_env, tmp_path, browser, monkeypatch):
        post = AsyncMock(return_value=(200, '{"access_token": "abc"}'))
        monkeypatch.setattr(TokenAuthProvider, "_post_token_request", post)
        manager = SessionManager(AuthConfig.from_dict(token_config_dict), project_root=tmp_path, env=auth_env)

        path = await manager.ensure_session(browser, "admin")

        origins = json.loads(path.read_text())["origins"]
        assert [o["origin"] for o in origins] == ["https://app.test"]
        stored = {item["name"]: item["value"] for item in origins[0]["localStorage"]}
        assert json.loads(stored[TOKEN_STORAGE_KEY])["token"] == "abc"
        post.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_token_without_app_url_saves_nothing(self, token_config_dict, auth_env, tmp_path, browser, monkeypatch):
        del token_config_dict["token"]["app_url"]
        post = AsyncMock(return_value=(200, '{"access_token": "abc"}'))
        monkeypatch.setattr(TokenAuthProvider, "_post_token_request", post)
        manager = SessionManager(AuthConfig.from_dict(token_config_dict), project_root=tmp_path, env=auth_env)

        with pytest.raises(AuthError) as exc:
            await manager.ensure_session(browser, "admin")

        assert "token.app_url" in exc.value.remediation
        assert browser.contexts[0].closed
        assert not manager.store.get_path("admin").exists()
        post.assert_not_awaited()


# ====================================================================
# 2. Pre-flight and sweep
# ====================================================================

class TestPreflight:
    def test_passes_with_all_credentials(self, manager):
        manager.preflight()

    def test_reports_every_missing_variable(self, auth_config, auth_env, tmp_path):
        del auth_env["VIEWER_PASS"]
        manager = SessionManager(auth_config, project_root=tmp_path, env=auth_env)

        with pytest.raises(AuthError) as exc:
            manager.preflight()

        assert exc.value.phase == "credentials"
        assert exc.value.role == "viewer"
        assert exc.value.message.startswith("Missing credentials:")
        assert 'export VIEWER_PASS="<value>"' in exc.value.message

    def test_limited_to_requested_roles(self, auth_config, auth_env, tmp_path):
        del auth_env["VIEWER_PASS"]
        SessionManager(auth_config, project_root=tmp_path, env=auth_env).preflight(["admin"])


class TestPrepare:
    def test_sweeps_day_old_states(self, manager):
        old = _age_file(manager.store.get_path("viewer"), 25 * 60 * MINUTE_MS)
        recent = _age_file(manager.store.get_path("admin"), 2 * 60 * MINUTE_MS)

        result = manager.prepare()

        assert result.deleted_files == [old]
        assert recent.exists()

    def test_environment_in_file_pattern(self, auth_config_dict, auth_env, tmp_path):
        auth_config_dict["storage_state"] = {"file_pattern": "{role}-{env}.json"}
        manager = SessionManager(
            AuthConfig.from_dict(auth_config_dict), project_root=tmp_path, environment="staging", env=auth_env,
        )
        assert manager.store.get_path("admin").name == "admin-staging.json"

"""
E2E Harness Package
Authentication orchestration and storage-state lifecycle for Playwright
end-to-end test harnesses.

Usage:
    from harness.auth import SessionManager, load_auth_config

    manager = SessionManager(load_auth_config("harness.yaml"))
    state_path = await manager.ensure_session(browser, "admin")
"""

from .auth import (
    AuthConfig,
    AuthError,
    SessionManager,
    StorageStateError,
    StorageStateStore,
    bootstrap_sessions,
    create_auth_provider,
    load_auth_config,
)

__version__ = "1.0.0"

__all__ = [
    'AuthConfig',
    'AuthError',
    'SessionManager',
    'StorageStateError',
    'StorageStateStore',
    'bootstrap_sessions',
    'create_auth_provider',
    'load_auth_config',
]

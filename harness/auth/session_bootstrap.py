"""
Session Bootstrap
=================
Composition root for establishing role sessions before a test run.

Workflow:
    1. Configure process logging (once)
    2. Load ``.env`` into the environment (python-dotenv)
    3. Load the auth config and check every role's credentials
    4. Sweep state files older than 24h
    5. Launch Chromium and ensure a fresh session per role
    6. Close the browser

Usage::

    # Programmatic (e.g. from a pytest ``pytest_sessionstart`` hook):
    from harness.auth.session_bootstrap import bootstrap_sessions
    paths = asyncio.run(bootstrap_sessions("harness.yaml", roles=["admin"]))

    # Blocking helper:
    from harness.auth.session_bootstrap import run_bootstrap
    run_bootstrap("harness.yaml")
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from dotenv import load_dotenv
from playwright.async_api import async_playwright

from .config import load_auth_config
from .session_manager import SessionManager

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Set up process-wide logging.  Call once, at the entry point."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)


async def bootstrap_sessions(
    config_path: Union[str, Path],
    roles: Optional[List[str]] = None,
    headless: bool = True,
    *,
    project_root: Union[str, Path, None] = None,
    environment: Optional[str] = None,
    force_login: bool = False,
    dotenv_path: Union[str, Path, None] = None,
) -> Dict[str, Path]:
    """Ensure a valid saved session exists for each role.

    Args:
        config_path:  YAML file holding the auth config.
        roles:        Roles to prepare (default: every configured role).
        headless:     Run Chromium headless.
        project_root: Root the state directory is relative to (default CWD).
        environment:  Value substituted for ``{env}`` in the file pattern.
        force_login:  Log in again even if a saved state is still valid.
        dotenv_path:  ``.env`` file to load (default: search upward from CWD).

    Returns:
        Mapping of role → storage state path.

    Raises:
        AuthError:         Missing credentials or a failed login.
        StorageStateError: A state could not be saved.
    """
    load_dotenv(dotenv_path)
    auth_config = load_auth_config(config_path)
    auth_config.log_summary()

    roles = roles if roles is not None else list(auth_config.roles)
    manager = SessionManager(auth_config, project_root=project_root, environment=environment)
    manager.preflight(roles)
    manager.prepare()

    paths: Dict[str, Path] = {}
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(
            headless=headless,
            args=["--no-sandbox", "--disable-dev-shm-usage"],
        )
        try:
            for role in roles:
                paths[role] = await manager.ensure_session(browser, role, force_login=force_login)
        finally:
            await browser.close()

    for role, path in paths.items():
        logger.info(f"[BOOTSTRAP] {role}: {path}")
    return paths


def run_bootstrap(
    config_path: Union[str, Path],
    roles: Optional[List[str]] = None,
    headless: bool = True,
    level: Union[int, str] = logging.INFO,
) -> Dict[str, Path]:
    """Blocking entry point: configure logging and run ``bootstrap_sessions``."""
    configure_logging(level)
    return asyncio.run(bootstrap_sessions(config_path, roles=roles, headless=headless))

"""
Authentication Factory
======================
Builds the configured auth provider for a role.

The factory is the ONLY place that maps ``auth.provider`` to a provider
class.  Callers (the session manager, generated setup fixtures) never
import OIDC, form, token or custom providers directly.

Usage::

    from harness.auth.auth_factory import create_auth_provider

    provider = create_auth_provider(auth_config, "admin")
    await provider.login(page, creds)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Mapping, Optional, Union

from .base_auth import BaseAuthProvider
from .config import AuthConfig, RoleConfig, merge_oidc_config
from .errors import PHASE_CREDENTIALS, AuthError
from .probing import SelectorProbe
from .providers import FormAuthProvider, OIDCAuthProvider, TokenAuthProvider, create_custom_provider

logger = logging.getLogger(__name__)


# ── Role helpers ─────────────────────────────────────────────────

def get_role_names(auth_config: AuthConfig) -> List[str]:
    return list(auth_config.roles)


def has_role(auth_config: AuthConfig, role: str) -> bool:
    return role in auth_config.roles


def get_role_config(auth_config: AuthConfig, role: str) -> Optional[RoleConfig]:
    return auth_config.roles.get(role)


def get_storage_state_directory(auth_config: AuthConfig, project_root: Union[str, Path, None] = None) -> Path:
    """Absolute directory holding the saved states."""
    root = Path(project_root) if project_root is not None else Path.cwd()
    return (root / auth_config.storage_state.directory).resolve()


# ── Factory ──────────────────────────────────────────────────────

def create_auth_provider(
    auth_config: AuthConfig,
    role: str,
    env: Optional[Mapping[str, str]] = None,
    log: Optional[logging.Logger] = None,
) -> BaseAuthProvider:
    """Instantiate the provider configured under ``auth.provider`` for *role*.

    For OIDC, the role's ``oidc_overrides`` are deep-merged over the base
    OIDC config first.

    Raises:
        AuthError:  (phase ``credentials``) if *role* is not configured.
        ValueError: If the provider section or custom factory is invalid.
    """
    role_config = get_role_config(auth_config, role)
    if role_config is None:
        available = ", ".join(get_role_names(auth_config))
        raise AuthError(
            f'Role "{role}" not found in auth configuration. Available roles: {available}',
            role=role,
            phase=PHASE_CREDENTIALS,
        )

    probe = SelectorProbe.from_settings(auth_config.probe)
    retry = auth_config.retry
    provider_type = auth_config.provider

    if provider_type == "oidc":
        oidc = merge_oidc_config(auth_config.oidc, role_config.oidc_overrides)
        provider: BaseAuthProvider = OIDCAuthProvider(oidc, role, retry, probe, env=env, log=log)
    elif provider_type == "form":
        provider = FormAuthProvider(auth_config.form, role, retry, probe, log=log)
    elif provider_type == "token":
        provider = TokenAuthProvider(auth_config.token, role, retry, probe, log=log)
    elif provider_type == "custom":
        provider = create_custom_provider(auth_config.custom, role, retry, probe, log=log)
    else:
        raise ValueError(f"Unknown auth provider type: {provider_type!r}")

    logger.debug(f"[AUTH-FACTORY] Created {provider.provider_name} provider for role '{role}'")
    return provider

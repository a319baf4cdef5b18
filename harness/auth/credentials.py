"""
Credential Resolver
===================
Maps a role to a username/password pair pulled from named environment
variables.

Responsibilities:
    - Resolve one role's credentials (fails fast, naming the role and var)
    - Validate many roles up front without raising (pre-flight)
    - Render a copy-paste friendly report of what is missing

Secrets never reach the log: passwords are masked as ``***``.

Usage::

    from harness.auth.credentials import resolve_credentials

    creds = resolve_credentials("admin", auth_config)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .config import AuthConfig, RoleConfig
from .errors import PHASE_CREDENTIALS, AuthError

logger = logging.getLogger(__name__)

MASK = "***"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclass
class Credentials:
    """Resolved credentials for one role.  The password never appears in repr."""
    username: str
    password: str = field(repr=False)

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password={MASK!r})"


@dataclass
class MissingCredential:
    """One problem found during pre-flight validation."""
    role: str
    type: str  # "role" | "username" | "password"
    message: str
    env_var: Optional[str] = None


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _read_env(env: Optional[Mapping[str, str]], name: str) -> str:
    source = os.environ if env is None else env
    return (source.get(name) or "").strip()


def resolve_from_role_config(
    role: str,
    role_config: RoleConfig,
    env: Optional[Mapping[str, str]] = None,
    mask_password: bool = True,
    log: Optional[logging.Logger] = None,
) -> Credentials:
    """Resolve credentials directly from a ``RoleConfig``.

    Raises:
        AuthError: (phase ``credentials``) if either variable is unset or empty.
    """
    log = log or logger
    names = role_config.credentials_env

    values: Dict[str, str] = {}
    for kind, var in (("username", names.username), ("password", names.password)):
        value = _read_env(env, var)
        if not value:
            raise AuthError(
                f'Environment variable "{var}" for role "{role}" {kind} is not set',
                role=role,
                phase=PHASE_CREDENTIALS,
                remediation=f'Set the {var} environment variable with the {kind} for the "{role}" role',
            )
        values[kind] = value

    shown = MASK if mask_password else values["password"]
    log.info(f"[CREDENTIALS] Resolved role '{role}' (username={values['username']}, password={shown})")
    return Credentials(username=values["username"], password=values["password"])


def resolve_credentials(
    role: str,
    auth_config: AuthConfig,
    env: Optional[Mapping[str, str]] = None,
    mask_password: bool = True,
    log: Optional[logging.Logger] = None,
) -> Credentials:
    """Resolve the credentials for *role* from the environment.

    Args:
        role:          Role name as declared under ``roles``.
        auth_config:   Loaded auth configuration.
        env:           Mapping to read from (default: ``os.environ``).
        mask_password: Log ``***`` instead of the password.

    Raises:
        AuthError: (phase ``credentials``) naming the role or variable.
    """
    role_config = auth_config.roles.get(role)
    if role_config is None:
        available = ", ".join(auth_config.roles) or "(none)"
        raise AuthError(
            f'Role "{role}" not found in auth configuration. Available roles: {available}',
            role=role,
            phase=PHASE_CREDENTIALS,
            remediation=f'Add the "{role}" role under auth.roles or use one of: {available}',
        )
    return resolve_from_role_config(role, role_config, env, mask_password, log)


# ---------------------------------------------------------------------------
# Pre-flight validation
# ---------------------------------------------------------------------------

def validate_credentials(
    roles: List[str],
    auth_config: AuthConfig,
    env: Optional[Mapping[str, str]] = None,
) -> List[MissingCredential]:
    """Check every role's variables without raising.

    Returns:
        One ``MissingCredential`` per problem; empty when all are present.
    """
    missing: List[MissingCredential] = []
    for role in roles:
        role_config = auth_config.roles.get(role)
        if role_config is None:
            missing.append(MissingCredential(
                role=role, type="role",
                message=f'Role "{role}" not found in auth configuration',
            ))
            continue

        names = role_config.credentials_env
        for kind, var in (("username", names.username), ("password", names.password)):
            if not _read_env(env, var):
                missing.append(MissingCredential(
                    role=role, type=kind, env_var=var,
                    message=f"{kind.capitalize()} environment variable is not set",
                ))
    return missing


def has_credentials(
    role: str,
    auth_config: AuthConfig,
    env: Optional[Mapping[str, str]] = None,
) -> bool:
    return not validate_credentials([role], auth_config, env)


def format_missing_credentials(missing: List[MissingCredential]) -> str:
    """Render a human-readable report grouped by role.

    Ends with deduplicated ``export VAR="<value>"`` lines.
    """
    if not missing:
        return ""

    by_role: Dict[str, List[MissingCredential]] = {}
    for item in missing:
        by_role.setdefault(item.role, []).append(item)

    lines = ["Missing credentials:"]
    for role, items in by_role.items():
        lines.append(f'  Role "{role}":')
        for item in items:
            if item.env_var:
                lines.append(f"    - {item.type}: {item.env_var} ({item.message})")
            else:
                lines.append(f"    - {item.message}")

    env_vars = list(dict.fromkeys(item.env_var for item in missing if item.env_var))
    if env_vars:
        lines.append("")
        lines.append("To fix, set the required environment variables:")
        for var in env_vars:
            lines.append(f'  export {var}="<value>"')

    return "\n".join(lines)

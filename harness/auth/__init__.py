"""
Harness Authentication
======================
Logs test roles into the application under test through an IdP (or a
plain form / token endpoint) and keeps one reusable, time-bounded
storage-state file per role.

Main entry points:
    - ``SessionManager.ensure_session``   reuse-or-login for one role
    - ``create_auth_provider``            provider for a role (login/logout)
    - ``StorageStateStore``               saved-state persistence
    - ``bootstrap_sessions``              composition root (Playwright + .env)
"""

from .auth_factory import (
    create_auth_provider,
    get_role_config,
    get_role_names,
    get_storage_state_directory,
    has_role,
)
from .base_auth import BaseAuthProvider, calculate_retry_delay, is_retryable
from .config import AuthConfig, load_auth_config, merge_oidc_config
from .credentials import (
    Credentials,
    MissingCredential,
    format_missing_credentials,
    has_credentials,
    resolve_credentials,
    validate_credentials,
)
from .errors import AuthError, AuthResult, MfaError, RequiredActionError, StorageStateError
from .idp import IdpRegistry, detect_idp_type, get_idp_handler
from .oidc_flow import detect_auth_error, execute_oidc_flow, is_oidc_session_valid
from .probing import SelectorProbe
from .providers import CustomAuthProvider, FormAuthProvider, OIDCAuthProvider, TokenAuthProvider
from .session_bootstrap import bootstrap_sessions, configure_logging
from .session_manager import SessionManager
from .session_store import (
    CLEANUP_MAX_AGE_MS,
    CleanupResult,
    StorageStateMetadata,
    StorageStateOptions,
    StorageStateStore,
    get_role_from_path,
)
from .totp import generate_totp, generate_totp_code, time_until_next_window, verify_totp

__all__ = [
    "AuthConfig",
    "AuthError",
    "AuthResult",
    "BaseAuthProvider",
    "CLEANUP_MAX_AGE_MS",
    "CleanupResult",
    "Credentials",
    "CustomAuthProvider",
    "FormAuthProvider",
    "IdpRegistry",
    "MfaError",
    "MissingCredential",
    "OIDCAuthProvider",
    "RequiredActionError",
    "SelectorProbe",
    "SessionManager",
    "StorageStateError",
    "StorageStateMetadata",
    "StorageStateOptions",
    "StorageStateStore",
    "TokenAuthProvider",
    "bootstrap_sessions",
    "calculate_retry_delay",
    "configure_logging",
    "create_auth_provider",
    "detect_auth_error",
    "detect_idp_type",
    "execute_oidc_flow",
    "format_missing_credentials",
    "generate_totp",
    "generate_totp_code",
    "get_idp_handler",
    "get_role_config",
    "get_role_from_path",
    "get_role_names",
    "get_storage_state_directory",
    "has_credentials",
    "has_role",
    "is_oidc_session_valid",
    "is_retryable",
    "load_auth_config",
    "merge_oidc_config",
    "resolve_credentials",
    "time_until_next_window",
    "validate_credentials",
    "verify_totp",
]

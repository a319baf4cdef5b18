"""
Auth Configuration
==================
Single source of truth for every auth default and per-phase timeout.

The configuration is declarative and loaded once per process, either from
a YAML file (``load_auth_config``) or from a plain mapping
(``AuthConfig.from_dict``).  Providers, the flow engine and the storage
store all read from these objects; none of them hard-code numbers.

Example YAML::

    auth:
      provider: oidc
      roles:
        admin:
          credentials_env: {username: ADMIN_USER, password: ADMIN_PASS}
      oidc:
        idp_type: keycloak
        login_url: https://app.example.com/login
        success: {url: /dashboard}
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Pattern, Union

import yaml

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults
# ---------------------------------------------------------------------------
_DEFAULTS = {
    # Storage state
    "storage_directory": ".auth-states",
    "storage_max_age_minutes": 60,
    "storage_file_pattern": "{role}.json",
    # OIDC phase timeouts
    "login_flow_ms": 30000,
    "idp_redirect_ms": 10000,
    "callback_ms": 10000,
    "push_timeout_ms": 30000,
    # Form phase timeouts
    "form_navigation_ms": 30000,
    "form_submit_ms": 10000,
    "form_success_ms": 5000,
    # Token endpoint
    "token_field": "access_token",
    "header_name": "Authorization",
    "header_prefix": "Bearer ",
    "token_timeout_ms": 10000,
    "username_field": "username",
    "password_field": "password",
    # Retry envelope
    "max_retries": 2,
    "initial_delay_ms": 1000,
    "max_delay_ms": 10000,
    "backoff_multiplier": 2.0,
    "retry_on_timeout": True,
    "retry_on_network_error": True,
    # Visibility probing
    "probe_timeout_ms": 500,
    "probe_poll_interval_ms": 100,
}

PROVIDER_TYPES = ("oidc", "form", "token", "custom")
MFA_TYPES = ("totp", "push", "sms", "none")


def _require(data: Mapping[str, Any], key: str, context: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ValueError(f"Missing required auth config key: {context}.{key}")
    return value


def _mapping(data: Any, context: str) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Auth config key {context} must be a mapping, got {type(data).__name__}")
    return data


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------

@dataclass
class RetryOptions:
    """Retry envelope shared by every provider."""
    max_retries: int = _DEFAULTS["max_retries"]
    initial_delay_ms: int = _DEFAULTS["initial_delay_ms"]
    max_delay_ms: int = _DEFAULTS["max_delay_ms"]
    backoff_multiplier: float = _DEFAULTS["backoff_multiplier"]
    retry_on_timeout: bool = _DEFAULTS["retry_on_timeout"]
    retry_on_network_error: bool = _DEFAULTS["retry_on_network_error"]

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "RetryOptions":
        data = _mapping(data, "retry")
        options = cls(**{
            f.name: data[f.name] for f in dataclasses.fields(cls) if f.name in data
        })
        if options.max_retries < 0:
            raise ValueError("Auth config key retry.max_retries must be >= 0")
        return options


@dataclass
class ProbeSettings:
    """Bounded polling used for every "is it visible" check."""
    timeout_ms: int = _DEFAULTS["probe_timeout_ms"]
    poll_interval_ms: int = _DEFAULTS["probe_poll_interval_ms"]

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ProbeSettings":
        data = _mapping(data, "probe")
        return cls(
            timeout_ms=int(data.get("timeout_ms", _DEFAULTS["probe_timeout_ms"])),
            poll_interval_ms=int(data.get("poll_interval_ms", _DEFAULTS["probe_poll_interval_ms"])),
        )


@dataclass
class StorageStateConfig:
    directory: str = _DEFAULTS["storage_directory"]
    max_age_minutes: float = _DEFAULTS["storage_max_age_minutes"]
    file_pattern: str = _DEFAULTS["storage_file_pattern"]

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "StorageStateConfig":
        data = _mapping(data, "storage_state")
        cfg = cls(
            directory=data.get("directory", _DEFAULTS["storage_directory"]),
            max_age_minutes=data.get("max_age_minutes", _DEFAULTS["storage_max_age_minutes"]),
            file_pattern=data.get("file_pattern", _DEFAULTS["storage_file_pattern"]),
        )
        if "{role}" not in cfg.file_pattern:
            raise ValueError("Auth config key storage_state.file_pattern must contain {role}")
        return cfg


@dataclass
class SuccessConfig:
    """How to recognise a completed login.

    ``url`` is matched as a substring, ``url_regex`` as a compiled pattern.
    """
    url: Optional[str] = None
    url_regex: Optional[Pattern[str]] = None
    selector: Optional[str] = None
    timeout_ms: Optional[int] = None

    @property
    def url_pattern(self) -> Optional[Union[str, Pattern[str]]]:
        return self.url_regex if self.url_regex is not None else self.url

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], context: str = "success") -> "SuccessConfig":
        data = _mapping(data, context)
        regex = data.get("url_regex")
        if isinstance(regex, str):
            try:
                regex = re.compile(regex)
            except re.error as e:
                raise ValueError(f"Auth config key {context}.url_regex is not a valid pattern: {e}") from e
        return cls(
            url=data.get("url"),
            url_regex=regex,
            selector=data.get("selector"),
            timeout_ms=data.get("timeout_ms"),
        )


# ---------------------------------------------------------------------------
# Provider sub-configs
# ---------------------------------------------------------------------------

@dataclass
class MFAConfig:
    type: str = "none"
    totp_secret_env: Optional[str] = None
    totp_input_selector: Optional[str] = None
    totp_submit_selector: Optional[str] = None
    push_timeout_ms: int = _DEFAULTS["push_timeout_ms"]

    @property
    def enabled(self) -> bool:
        return self.type != "none"

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["MFAConfig"]:
        if data is None:
            return None
        data = _mapping(data, "oidc.mfa")
        mfa_type = data.get("type", "none")
        if mfa_type not in MFA_TYPES:
            raise ValueError(f"Auth config key oidc.mfa.type must be one of {MFA_TYPES}, got {mfa_type!r}")
        return cls(
            type=mfa_type,
            totp_secret_env=data.get("totp_secret_env"),
            totp_input_selector=data.get("totp_input_selector"),
            totp_submit_selector=data.get("totp_submit_selector"),
            push_timeout_ms=data.get("push_timeout_ms", _DEFAULTS["push_timeout_ms"]),
        )


@dataclass
class OIDCTimeouts:
    login_flow_ms: int = _DEFAULTS["login_flow_ms"]
    idp_redirect_ms: int = _DEFAULTS["idp_redirect_ms"]
    callback_ms: int = _DEFAULTS["callback_ms"]


@dataclass
class LogoutConfig:
    url: Optional[str] = None
    idp_logout: bool = False


@dataclass
class OIDCConfig:
    login_url: str
    idp_type: str = "generic"
    idp_login_url: Optional[str] = None
    idp_selectors: Dict[str, str] = field(default_factory=dict)
    mfa: Optional[MFAConfig] = None
    success: SuccessConfig = field(default_factory=SuccessConfig)
    timeouts: OIDCTimeouts = field(default_factory=OIDCTimeouts)
    logout: Optional[LogoutConfig] = None
    skip_idp_redirect: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OIDCConfig":
        data = _mapping(data, "oidc")
        timeouts = _mapping(data.get("timeouts"), "oidc.timeouts")
        logout = data.get("logout")
        return cls(
            login_url=_require(data, "login_url", "oidc"),
            idp_type=data.get("idp_type") or "generic",
            idp_login_url=data.get("idp_login_url"),
            idp_selectors=dict(_mapping(data.get("idp_selectors"), "oidc.idp_selectors")),
            mfa=MFAConfig.from_dict(data.get("mfa")),
            success=SuccessConfig.from_dict(data.get("success"), "oidc.success"),
            timeouts=OIDCTimeouts(
                login_flow_ms=timeouts.get("login_flow_ms", _DEFAULTS["login_flow_ms"]),
                idp_redirect_ms=timeouts.get("idp_redirect_ms", _DEFAULTS["idp_redirect_ms"]),
                callback_ms=timeouts.get("callback_ms", _DEFAULTS["callback_ms"]),
            ),
            logout=LogoutConfig(**_mapping(logout, "oidc.logout")) if logout is not None else None,
            skip_idp_redirect=bool(data.get("skip_idp_redirect", False)),
        )


@dataclass
class FormSelectors:
    username: str
    password: str
    submit: str


@dataclass
class FormTimeouts:
    navigation_ms: int = _DEFAULTS["form_navigation_ms"]
    submit_ms: int = _DEFAULTS["form_submit_ms"]
    success_ms: int = _DEFAULTS["form_success_ms"]


@dataclass
class FormAuthConfig:
    login_url: str
    selectors: FormSelectors
    success: SuccessConfig = field(default_factory=SuccessConfig)
    timeouts: FormTimeouts = field(default_factory=FormTimeouts)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormAuthConfig":
        data = _mapping(data, "form")
        selectors = _mapping(_require(data, "selectors", "form"), "form.selectors")
        timeouts = _mapping(data.get("timeouts"), "form.timeouts")
        return cls(
            login_url=_require(data, "login_url", "form"),
            selectors=FormSelectors(
                username=_require(selectors, "username", "form.selectors"),
                password=_require(selectors, "password", "form.selectors"),
                submit=_require(selectors, "submit", "form.selectors"),
            ),
            success=SuccessConfig.from_dict(data.get("success"), "form.success"),
            timeouts=FormTimeouts(
                navigation_ms=timeouts.get("navigation_ms", _DEFAULTS["form_navigation_ms"]),
                submit_ms=timeouts.get("submit_ms", _DEFAULTS["form_submit_ms"]),
                success_ms=timeouts.get("success_ms", _DEFAULTS["form_success_ms"]),
            ),
        )


@dataclass
class TokenRequestBody:
    username_field: str = _DEFAULTS["username_field"]
    password_field: str = _DEFAULTS["password_field"]
    additional_fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenAuthConfig:
    """``app_url`` is opened before the token is stored so it lands under the app's origin."""
    token_endpoint: str
    app_url: Optional[str] = None
    token_field: str = _DEFAULTS["token_field"]
    header_name: str = _DEFAULTS["header_name"]
    header_prefix: str = _DEFAULTS["header_prefix"]
    timeout_ms: int = _DEFAULTS["token_timeout_ms"]
    request_body: TokenRequestBody = field(default_factory=TokenRequestBody)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TokenAuthConfig":
        data = _mapping(data, "token")
        body = _mapping(data.get("request_body"), "token.request_body")
        return cls(
            token_endpoint=_require(data, "token_endpoint", "token"),
            app_url=data.get("app_url"),
            token_field=data.get("token_field", _DEFAULTS["token_field"]),
            header_name=data.get("header_name", _DEFAULTS["header_name"]),
            header_prefix=data.get("header_prefix", _DEFAULTS["header_prefix"]),
            timeout_ms=data.get("timeout_ms", _DEFAULTS["token_timeout_ms"]),
            request_body=TokenRequestBody(
                username_field=body.get("username_field", _DEFAULTS["username_field"]),
                password_field=body.get("password_field", _DEFAULTS["password_field"]),
                additional_fields=dict(_mapping(body.get("additional_fields"), "token.request_body.additional_fields")),
            ),
        )


@dataclass
class CustomAuthConfig:
    """``factory`` is a ``module:attr`` import path to a provider class or callable."""
    factory: str
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CustomAuthConfig":
        data = _mapping(data, "custom")
        factory = _require(data, "factory", "custom")
        if ":" not in factory:
            raise ValueError(f"Auth config key custom.factory must look like 'module:attr', got {factory!r}")
        return cls(factory=factory, options=dict(_mapping(data.get("options"), "custom.options")))


# ---------------------------------------------------------------------------
# Roles and the root object
# ---------------------------------------------------------------------------

@dataclass
class CredentialsEnv:
    """Names of the env vars holding a role's username and password."""
    username: str
    password: str


@dataclass
class RoleConfig:
    credentials_env: CredentialsEnv
    description: Optional[str] = None
    oidc_overrides: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, role: str, data: Mapping[str, Any]) -> "RoleConfig":
        context = f"roles.{role}"
        data = _mapping(data, context)
        env = _mapping(_require(data, "credentials_env", context), f"{context}.credentials_env")
        return cls(
            credentials_env=CredentialsEnv(
                username=_require(env, "username", f"{context}.credentials_env"),
                password=_require(env, "password", f"{context}.credentials_env"),
            ),
            description=data.get("description"),
            oidc_overrides=dict(_mapping(data.get("oidc_overrides"), f"{context}.oidc_overrides")),
        )


@dataclass
class AuthConfig:
    """
    Root auth configuration.

    Populate via:
      - ``AuthConfig.from_dict(mapping)``   → from a parsed mapping
      - ``load_auth_config("auth.yaml")``   → from a YAML file
    """

    provider: str
    roles: Dict[str, RoleConfig]
    storage_state: StorageStateConfig = field(default_factory=StorageStateConfig)
    oidc: Optional[OIDCConfig] = None
    form: Optional[FormAuthConfig] = None
    token: Optional[TokenAuthConfig] = None
    custom: Optional[CustomAuthConfig] = None
    retry: RetryOptions = field(default_factory=RetryOptions)
    probe: ProbeSettings = field(default_factory=ProbeSettings)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuthConfig":
        data = _mapping(data, "auth")
        provider = _require(data, "provider", "auth")
        if provider not in PROVIDER_TYPES:
            raise ValueError(f"Auth config key auth.provider must be one of {PROVIDER_TYPES}, got {provider!r}")

        roles = _mapping(data.get("roles"), "roles")
        if not roles:
            raise ValueError("Auth config key roles must define at least one role")

        cfg = cls(
            provider=provider,
            roles={name: RoleConfig.from_dict(name, body) for name, body in roles.items()},
            storage_state=StorageStateConfig.from_dict(data.get("storage_state")),
            oidc=OIDCConfig.from_dict(data["oidc"]) if data.get("oidc") is not None else None,
            form=FormAuthConfig.from_dict(data["form"]) if data.get("form") is not None else None,
            token=TokenAuthConfig.from_dict(data["token"]) if data.get("token") is not None else None,
            custom=CustomAuthConfig.from_dict(data["custom"]) if data.get("custom") is not None else None,
            retry=RetryOptions.from_dict(data.get("retry")),
            probe=ProbeSettings.from_dict(data.get("probe")),
        )
        if getattr(cfg, provider) is None:
            raise ValueError(f"Auth config key auth.{provider} is required when provider is {provider!r}")
        return cfg

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self, log: Optional[logging.Logger] = None) -> None:
        """Emit a structured summary to the logger.  Never prints secrets."""
        log = log or logger
        log.info("=" * 60)
        log.info("AUTH CONFIG")
        log.info("=" * 60)
        log.info(f"  Provider:         {self.provider}")
        log.info(f"  Roles:            {', '.join(self.roles)}")
        log.info(f"  State Dir:        {self.storage_state.directory}")
        log.info(f"  State Pattern:    {self.storage_state.file_pattern}")
        log.info(f"  State Max Age:    {self.storage_state.max_age_minutes} min")
        log.info(f"  Retries:          {self.retry.max_retries} (backoff x{self.retry.backoff_multiplier})")
        if self.oidc:
            log.info(f"  IdP Type:         {self.oidc.idp_type}")
            log.info(f"  Login URL:        {self.oidc.login_url}")
            if self.oidc.mfa and self.oidc.mfa.enabled:
                log.info(f"  MFA:              {self.oidc.mfa.type}")
        if self.form:
            log.info(f"  Login URL:        {self.form.login_url}")
        if self.token:
            log.info(f"  Token Endpoint:   {self.token.token_endpoint}")
        if self.custom:
            log.info(f"  Custom Factory:   {self.custom.factory}")
        log.info("=" * 60)


# ── Public API ───────────────────────────────────────────────────

def merge_oidc_config(base: OIDCConfig, overrides: Optional[Mapping[str, Any]]) -> OIDCConfig:
    """Deep-merge a role's partial OIDC mapping over the base config.

    Nested mappings (``success``, ``timeouts``, ``mfa``, ``idp_selectors``)
    merge key by key; scalar values replace.
    """
    if not overrides:
        return base
    merged = _deep_merge(dataclasses.asdict(base), overrides)
    return OIDCConfig.from_dict(merged)


def load_auth_config(path: Union[str, Path]) -> AuthConfig:
    """Load an ``AuthConfig`` from a YAML file.

    The file may hold the auth mapping at the top level or under an
    ``auth:`` key (so it can live inside a larger harness config).

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError:        If the content is not a valid auth mapping.
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Auth config {path} is not valid YAML: {e}") from e

    if not isinstance(data, Mapping):
        raise ValueError(f"Auth config {path} must contain a mapping")
    if isinstance(data.get("auth"), Mapping):
        data = data["auth"]

    cfg = AuthConfig.from_dict(data)
    logger.info(f"[CONFIG] Loaded auth config from {path} ({len(cfg.roles)} role(s))")
    return cfg

"""Concrete auth providers sharing the ``BaseAuthProvider`` retry envelope."""

from .custom import CustomAuthProvider, create_custom_provider, load_custom_factory
from .form import FormAuthProvider
from .oidc import OIDCAuthProvider
from .token import TOKEN_STORAGE_KEY, TokenAuthProvider, get_stored_token

__all__ = [
    "CustomAuthProvider",
    "FormAuthProvider",
    "OIDCAuthProvider",
    "TOKEN_STORAGE_KEY",
    "TokenAuthProvider",
    "create_custom_provider",
    "get_stored_token",
    "load_custom_factory",
]

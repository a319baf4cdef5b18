"""
IdP Handler Registry
====================
Maps an ``idp_type`` to the handler that drives that IdP's login page.

Adding an IdP:
    1. Subclass ``BaseIdpHandler`` (see ``base.py``)
    2. Call ``IdpRegistry.register("my-idp", MyHandler)``
    3. Set ``oidc.idp_type: my-idp`` in the auth config

Unknown types fall back to the generic handler.

Usage::

    from harness.auth.idp import IdpRegistry, detect_idp_type

    handler = IdpRegistry.get(detect_idp_type(page.url))
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type

from ..probing import SelectorProbe
from .azure_ad import AzureAdHandler
from .base import GENERIC_ERROR_SELECTORS, BaseIdpHandler
from .generic import GenericHandler, create_generic_handler
from .keycloak import KeycloakHandler
from .okta import OktaHandler

logger = logging.getLogger(__name__)

DEFAULT_IDP_TYPE = "generic"

# Global registry: idp_type → handler class
_HANDLER_REGISTRY: Dict[str, Type[BaseIdpHandler]] = {}


class IdpRegistry:
    """Registry of IdP handlers keyed on ``idp_type``."""

    @staticmethod
    def register(idp_type: str, handler_class: Type[BaseIdpHandler]) -> None:
        _HANDLER_REGISTRY[idp_type.lower()] = handler_class
        logger.debug(f"[IDP] Registered handler: {idp_type.lower()}")

    @staticmethod
    def get(
        idp_type: Optional[str],
        probe: Optional[SelectorProbe] = None,
        log: Optional[logging.Logger] = None,
    ) -> BaseIdpHandler:
        """Instantiate the handler for *idp_type*, or the generic one."""
        key = (idp_type or DEFAULT_IDP_TYPE).lower()
        handler_class = _HANDLER_REGISTRY.get(key)
        if handler_class is None:
            logger.warning(f"[IDP] No handler registered for '{key}', using generic")
            handler_class = _HANDLER_REGISTRY[DEFAULT_IDP_TYPE]
        return handler_class(probe=probe, log=log)

    @staticmethod
    def detect(url: str) -> str:
        """Return the ``idp_type`` whose handler claims *url*, else "generic"."""
        for idp_type, handler_class in _HANDLER_REGISTRY.items():
            if handler_class().matches_url(url):
                return idp_type
        return DEFAULT_IDP_TYPE

    @staticmethod
    def list_handlers() -> List[str]:
        return list(_HANDLER_REGISTRY.keys())


def detect_idp_type(url: str) -> str:
    """Guess the IdP family from a login URL.

    Auth0 has no dedicated handler; it is reported as "auth0" and served
    by the generic handler.
    """
    detected = IdpRegistry.detect(url)
    if detected == DEFAULT_IDP_TYPE and "auth0.com" in url.lower():
        return "auth0"
    return detected


def get_idp_handler(
    idp_type: Optional[str],
    probe: Optional[SelectorProbe] = None,
    log: Optional[logging.Logger] = None,
) -> BaseIdpHandler:
    return IdpRegistry.get(idp_type, probe, log)


# ---------------------------------------------------------------------------
# Built-in handlers
# ---------------------------------------------------------------------------

def _auto_register() -> None:
    IdpRegistry.register("keycloak", KeycloakHandler)
    IdpRegistry.register("azure-ad", AzureAdHandler)
    IdpRegistry.register("okta", OktaHandler)
    IdpRegistry.register("auth0", GenericHandler)
    IdpRegistry.register("generic", GenericHandler)


_auto_register()

__all__ = [
    "AzureAdHandler",
    "BaseIdpHandler",
    "GENERIC_ERROR_SELECTORS",
    "GenericHandler",
    "IdpRegistry",
    "KeycloakHandler",
    "OktaHandler",
    "create_generic_handler",
    "detect_idp_type",
    "get_idp_handler",
]

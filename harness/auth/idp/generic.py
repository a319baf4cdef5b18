"""Generic IdP handler: common selector patterns, no IdP-specific prompts."""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from ..probing import SelectorProbe
from .base import BaseIdpHandler


class GenericHandler(BaseIdpHandler):
    idp_type = "generic"
    URL_MARKERS = ()


def create_generic_handler(
    custom_selectors: Optional[Mapping[str, str]] = None,
    probe: Optional[SelectorProbe] = None,
    log: Optional[logging.Logger] = None,
) -> GenericHandler:
    """Return a generic handler whose defaults include *custom_selectors*."""
    handler = GenericHandler(probe=probe, log=log)
    handler.DEFAULT_SELECTORS = handler.merge_selectors(custom_selectors)
    return handler

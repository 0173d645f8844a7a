"""
Helper utility functions.

This module contains reusable utility functions used throughout the application.
"""

from typing import Any, Dict, Optional

import config


def build_config_response(store=None) -> Dict[str, Any]:
    """
    Build the configuration dictionary for the /config/all endpoint.

    Args:
        store: Loaded ReferenceStore, if any; adds what reference data is available

    Returns:
        dict: Game settings plus reference-data locations and status
    """
    reference: Dict[str, Any] = {
        "memeCatalog": config.MEME_CATALOG_URL or config.MEME_CATALOG_PATH,
        "facialData": config.FACIAL_DATA_URL or config.FACIAL_DATA_PATH,
        "templateCache": config.TEMPLATE_CACHE_PATH,
    }
    if store is not None:
        reference.update(store.summary())
    return {
        "game": config.get_game_config(),
        "referenceData": reference,
    }


def parse_bool(value: Any, default: Optional[bool] = None) -> Optional[bool]:
    """Lenient bool from JSON/query values ("true", 1, True). Returns default if unreadable."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("true", "1", "yes", "on"):
            return True
        if v in ("false", "0", "no", "off"):
            return False
    return default

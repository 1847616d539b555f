"""Configuration sub-package.

Provides settings loading and typed configuration access.

Quick usage::

    from pysars.config import get_config

    cfg = get_config()
    print(cfg["fitting"]["norm_test"])
"""

from __future__ import annotations

from pysars.config.settings import get_config, get_typed_config

__all__ = [
    "get_config",
    "get_typed_config",
]

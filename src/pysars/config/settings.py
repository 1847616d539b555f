"""Settings module -- single entry point for library configuration.

:func:`get_config` returns the merged configuration dictionary.  It loads the
packaged ``default.yaml``, overlays the file named by the ``PYSARS_CONFIG``
environment variable when set, and finally applies any ``PYSARS_`` prefixed
environment variable overrides.
"""

from __future__ import annotations

import functools
import os
from pathlib import Path
from typing import Any

from pysars.domain.models import AppConfig

_CONFIG_DIR = Path(__file__).resolve().parent
_DEFAULT_PATH = _CONFIG_DIR / "default.yaml"

_OVERLAY_ENV = "PYSARS_CONFIG"
_ENV_PREFIX = "PYSARS_"


@functools.lru_cache(maxsize=1)
def get_typed_config() -> AppConfig:
    """Return the :class:`AppConfig` wrapper for typed access.

    The result is cached so that repeated calls within the same process are
    essentially free.  Call ``get_typed_config.cache_clear()`` after changing
    the environment.

    Resolution order:

    1. packaged ``default.yaml``
    2. the file named by ``PYSARS_CONFIG`` if it exists
    3. Environment variables with ``PYSARS_`` prefix
    """
    overlay = os.environ.get(_OVERLAY_ENV)
    return AppConfig.load(
        default_path=_DEFAULT_PATH,
        overlay_path=Path(overlay) if overlay else None,
        env_prefix=_ENV_PREFIX,
    )


def get_config() -> dict[str, Any]:
    """Return the fully merged configuration dictionary.

    Returns
    -------
    dict[str, Any]
        The merged configuration tree.
    """
    return get_typed_config().data

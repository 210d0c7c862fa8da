"""
Run options -- defaults, an optional YAML file, then CLI flags.

    # localdb-sync.yaml
    networks: [Optimism, Arbitrum]
    db_dir: data
    failure_policy: continue
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from .errors import ConfigurationError
from .models import SyncOptions

logger = logging.getLogger("localdb_sync.config")


def load_options(path: Optional[Path] = None, **overrides: Any) -> SyncOptions:
    """Build SyncOptions from a YAML file plus explicit overrides.

    Overrides whose value is None are ignored, so unset CLI flags fall
    back to the file, then to the model defaults.

    Raises:
        ConfigurationError: If the file is unreadable or invalid.
    """
    data: dict[str, Any] = {}
    if path is not None:
        config_file = Path(path).expanduser()
        try:
            loaded = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Cannot read options file {config_file}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Options file {config_file} must contain a mapping")
        data.update(loaded)
        logger.debug("Loaded options from %s", config_file)

    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return SyncOptions(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid sync options: {exc}") from exc

"""JSON and YAML persistence helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)


def save_json(path: Path, data: Any) -> Path:
    """Write data as indented JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    logger.debug("Saved %s", path)
    return path


def load_json(path: Path) -> Optional[Any]:
    """Read a JSON file; returns None if it does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def save_yaml(path: Path, data: Any) -> Path:
    """Write data as block-style YAML, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, indent=2, sort_keys=False, allow_unicode=True)
    logger.debug("Saved %s", path)
    return path


def load_yaml(path: Path) -> Optional[Any]:
    """Read a YAML file; returns None if it does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)

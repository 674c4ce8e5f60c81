from __future__ import annotations

import json
import os
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

CONFIG_FILENAME = "reader-config.json"
STATE_DIR_ENV = "SHIORI_STATE_DIR"

DEFAULT_CONFIG: Dict[str, Union[int, float]] = {
    "scroll_debounce_ms": 200,
    "auto_advance_delay_ms": 500,
    # Fraction of one viewport height, measured against the scrollable height.
    "near_bottom_viewport_fraction": 0.1,
    "default_near_bottom_threshold": 0.05,
    "relative_scroll_step": 0.8,
    "notification_ms": 3000,
    "max_upload_bytes": 10 * 1024 * 1024,
}
_INT_KEYS = {
    "scroll_debounce_ms",
    "auto_advance_delay_ms",
    "notification_ms",
    "max_upload_bytes",
}


@dataclass(frozen=True)
class ReaderConfig:
    scroll_debounce_ms: int = 200
    auto_advance_delay_ms: int = 500
    near_bottom_viewport_fraction: float = 0.1
    default_near_bottom_threshold: float = 0.05
    relative_scroll_step: float = 0.8
    notification_ms: int = 3000
    max_upload_bytes: int = 10 * 1024 * 1024
    source_path: Optional[Path] = None


def default_state_dir() -> Path:
    override = os.environ.get(STATE_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".shiori"


def state_config_path(state_dir: Path) -> Path:
    return state_dir / CONFIG_FILENAME


def load_config(
    config_path: Optional[Path] = None,
    state_dir: Optional[Path] = None,
) -> ReaderConfig:
    """Build a ReaderConfig from the defaults plus an optional JSON override.

    An explicit ``config_path`` must exist. Without one, ``reader-config.json``
    inside ``state_dir`` is used when present.
    """
    values = deepcopy(DEFAULT_CONFIG)
    source_path = None

    if config_path is None and state_dir is not None:
        candidate = state_config_path(state_dir)
        if candidate.exists():
            config_path = candidate

    if config_path is not None:
        source_path = config_path
        data = json.loads(config_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a JSON object: {config_path}")
        for key in DEFAULT_CONFIG:
            if key not in data:
                continue
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Config key '{key}' must be a number.")
            if value < 0:
                raise ValueError(f"Config key '{key}' must not be negative.")
            values[key] = int(value) if key in _INT_KEYS else float(value)

    return ReaderConfig(
        scroll_debounce_ms=int(values["scroll_debounce_ms"]),
        auto_advance_delay_ms=int(values["auto_advance_delay_ms"]),
        near_bottom_viewport_fraction=float(values["near_bottom_viewport_fraction"]),
        default_near_bottom_threshold=float(values["default_near_bottom_threshold"]),
        relative_scroll_step=float(values["relative_scroll_step"]),
        notification_ms=int(values["notification_ms"]),
        max_upload_bytes=int(values["max_upload_bytes"]),
        source_path=source_path,
    )

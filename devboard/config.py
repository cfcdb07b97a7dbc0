# Devboard: configuration
# Override paths and screenshot settings via config.yaml or CLI args.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Optional

from .screenshot import DEFAULT_TIMEOUT_MS, DEFAULT_WINDOW_SIZE

CONFIG_PATH = Path("~/.config/devboard/config.yaml")


@dataclass
class Config:
    """Runtime configuration for the dashboard."""

    # Storage
    storage_dir: str = "~/.local/share/devboard"
    sync_db: str = ""  # empty = <storage_dir>/sync.db; point at a synced folder to roam

    # Screenshots
    screenshot_window_size: str = DEFAULT_WINDOW_SIZE
    screenshot_browser_paths: Dict[str, str] = field(default_factory=dict)  # sys.platform → path
    screenshot_timeout_ms: int = DEFAULT_TIMEOUT_MS
    auto_screenshot_on_missing: bool = False
    auto_screenshot_max_per_load: int = 3

    # Opening projects
    confirm_on_open: bool = False
    editor_command: str = "code"

    log_level: str = "WARNING"

    @property
    def thumbnails_dir(self) -> Path:
        return Path(self.storage_dir) / "thumbnails"

    def resolve_paths(self):
        """Expand ~ and fill derived paths."""
        self.storage_dir = str(Path(self.storage_dir).expanduser())
        if not self.sync_db:
            self.sync_db = str(Path(self.storage_dir) / "sync.db")
        self.sync_db = str(Path(self.sync_db).expanduser())

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        path = path or os.environ.get("DEVBOARD_CONFIG")
        cfg_path = Path(path).expanduser() if path else CONFIG_PATH.expanduser()
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
            except Exception:
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve_paths()
        return cfg

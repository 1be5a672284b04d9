"""Configuration loading for MCP Edit History.

Settings come from an optional TOML or JSON file in the project directory,
then from command-line overrides. Everything has a usable default, so a
project without a config file is watched out of the box.
"""

from __future__ import annotations

import fnmatch
import json
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import platformdirs

# Python 3.11+ has tomllib in stdlib; fall back to tomli for older versions
try:
    import tomllib  # Python 3.11+
except ImportError:  # pragma: no cover
    import tomli as tomllib  # Python <3.11

APP_NAME = "mcp-edit-history"
DATA_DIR_ENV = "MCP_EDIT_HISTORY_DIR"
DEFAULT_SLUG = "default"
DB_FILENAME = "history.db"

DEFAULT_EXTENSIONS = [
    ".py", ".pyi", ".rs", ".go", ".c", ".h", ".cc", ".cpp", ".hpp",
    ".java", ".kt", ".js", ".jsx", ".ts", ".tsx", ".rb", ".sh", ".toml",
]

DEFAULT_IGNORE_PATTERNS = [
    ".git",
    ".hg",
    ".svn",
    "__pycache__",
    "node_modules",
    "target",
    "venv",
    ".venv",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
    ".ruff_cache",
    "*.egg-info",
    "dist",
    "build",
]


@dataclass
class HistoryConfig:
    """Configuration for watching a project and storing its history."""

    # None means "ask git where the working tree starts"
    project_root: Optional[Path] = None
    data_dir: Optional[Path] = None

    debounce_seconds: float = 0.5
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    ignore_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))

    default_limit: int = 5
    lock_timeout: float = 10.0

    def get_watch_root(self) -> Optional[Path]:
        """Directory to watch, or None when no project root can be found."""
        if self.project_root is not None:
            return Path(self.project_root).resolve()
        return detect_project_root()

    def get_project_slug(self) -> str:
        start = Path(self.project_root) if self.project_root is not None else None
        return detect_project_slug(start)

    def get_data_dir(self) -> Path:
        if self.data_dir is not None:
            return Path(self.data_dir)
        return get_default_data_dir()

    def get_db_path(self) -> Path:
        return self.get_data_dir() / self.get_project_slug() / DB_FILENAME

    def is_ignored(self, path: Path, root: Optional[Path] = None) -> bool:
        """Check whether any component of ``path`` matches an ignore pattern.

        When ``root`` is given, only the components below it are checked, so
        a project that itself lives under e.g. ``build/`` is still watched.
        """
        path = Path(path)
        if root is not None:
            try:
                path = path.relative_to(root)
            except ValueError:
                pass
        for part in path.parts:
            for pattern in self.ignore_patterns:
                if fnmatch.fnmatch(part, pattern):
                    return True
        return False

    def is_tracked(self, path: Path, root: Optional[Path] = None) -> bool:
        """Check whether ``path`` belongs to the watched file-extension class."""
        path = Path(path)
        if path.suffix not in self.extensions:
            return False
        return not self.is_ignored(path, root)


def get_default_data_dir() -> Path:
    """Get the per-host application data directory.

    Uses the platform's user data directory by default.
    Can be overridden with the MCP_EDIT_HISTORY_DIR environment variable.
    """
    custom_dir = os.environ.get(DATA_DIR_ENV)
    if custom_dir:
        return Path(custom_dir)
    return Path(platformdirs.user_data_dir(APP_NAME))


def detect_project_root(start: Optional[Path] = None) -> Optional[Path]:
    """Return the git top-level directory containing ``start`` (default: cwd)."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            cwd=str(start) if start is not None else None,
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.SubprocessError):
        return None

    if result.returncode != 0:
        return None
    toplevel = result.stdout.strip()
    if not toplevel:
        return None
    return Path(toplevel).resolve()


def detect_project_slug(start: Optional[Path] = None) -> str:
    """Derive a short stable name for the project being watched.

    Search order:
    1. Name of the git top-level directory
    2. Name of the current working directory
    3. The literal "default"
    """
    root = detect_project_root(start)
    if root is not None and root.name:
        return root.name

    try:
        cwd_name = Path.cwd().name
    except OSError:
        cwd_name = ""
    if cwd_name:
        return cwd_name

    return DEFAULT_SLUG


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def dict_to_config(data: dict[str, Any], base_dir: Path) -> HistoryConfig:
    """Convert dictionary to HistoryConfig.

    Relative paths in the file are taken relative to ``base_dir``.
    """
    config = HistoryConfig()

    if "project" in data:
        proj = data["project"]
        if "root" in proj:
            config.project_root = (base_dir / proj["root"]).resolve()

    if "storage" in data:
        storage = data["storage"]
        if "data_dir" in storage:
            config.data_dir = (base_dir / Path(storage["data_dir"]).expanduser()).resolve()
        if "lock_timeout" in storage:
            config.lock_timeout = float(storage["lock_timeout"])

    if "watch" in data:
        watch = data["watch"]
        if "debounce_ms" in watch:
            config.debounce_seconds = watch["debounce_ms"] / 1000.0
        if "extensions" in watch:
            config.extensions = [
                ext if ext.startswith(".") else f".{ext}" for ext in watch["extensions"]
            ]
        if "ignore" in watch:
            config.ignore_patterns = list(watch["ignore"])
        if "extra_ignore" in watch:
            config.ignore_patterns.extend(watch["extra_ignore"])

    if "queries" in data:
        queries = data["queries"]
        if "default_limit" in queries:
            config.default_limit = int(queries["default_limit"])

    return config


def find_config_file(directory: Path) -> Optional[Path]:
    """Find configuration file in a directory.

    Search order:
    1. edit_history.toml
    2. edit_history.json
    3. .edit_history.toml
    4. .edit_history.json
    """
    candidates = [
        "edit_history.toml",
        "edit_history.json",
        ".edit_history.toml",
        ".edit_history.json",
    ]

    for name in candidates:
        path = directory / name
        if path.exists():
            return path

    return None


def load_config(start: Path, config_path: Optional[Path] = None) -> HistoryConfig:
    """Load configuration.

    Args:
        start: Directory to search for a config file (usually the project root)
        config_path: Optional explicit path to config file

    Returns:
        HistoryConfig instance
    """
    if config_path is None:
        config_path = find_config_file(start)

    if config_path is None:
        return HistoryConfig()

    suffix = config_path.suffix.lower()

    if suffix == ".toml":
        config_dict = load_toml_config(config_path)
    elif suffix == ".json":
        config_dict = load_json_config(config_path)
    else:
        raise ValueError(f"Unsupported config file type: {suffix}")

    return dict_to_config(config_dict, config_path.parent.resolve())

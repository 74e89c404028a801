"""Config loading for Analytics X-Ray.

Reads `.xray/config.yaml` (or `~/.xray/config.yaml`).
Raises SystemExit on parse errors or missing `version` field.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided, for testing or explicit override)
  2. XRAY_CONFIG environment variable (if set)
  3. `.xray/config.yaml` (working directory, for development)
  4. `~/.xray/config.yaml` (home directory)

Environment variable overrides:
  XRAY_PORT   — overrides panel.port (takes precedence over config file value)
  XRAY_CONFIG — sets an explicit config file path to try first

Example:

    version: 1
    storage:
      backend: sqlite          # sqlite | memory
      path: ~/.xray/storage.db
      key: analytics-xray-domain
    panel:
      host: 127.0.0.1
      port: 7717
    watch_storage: true
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Optional

import yaml

from xray.constants import (
    DEFAULT_PANEL_HOST,
    DEFAULT_PANEL_PORT,
    DEFAULT_STORAGE_PATH,
    STORAGE_KEY,
)
from xray.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

VALID_STORAGE_BACKENDS: frozenset[str] = frozenset({"sqlite", "memory"})

# Default config search paths (XRAY_CONFIG env var prepended at runtime)
DEFAULT_CONFIG_PATHS = [
    ".xray/config.yaml",
    os.path.expanduser("~/.xray/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class StorageConfig:
    """Storage area configuration.

    backend: "sqlite" (persistent, default) or "memory" (lost on restart)
    path:    SQLite file path; ignored by the memory backend
    key:     Logical key the allowlist document is stored under
    """

    backend: str = "sqlite"
    path: str = DEFAULT_STORAGE_PATH
    key: str = STORAGE_KEY


@dataclass
class PanelConfig:
    """Panel API binding configuration."""

    host: str = DEFAULT_PANEL_HOST
    port: int = DEFAULT_PANEL_PORT


@dataclass
class Config:
    """Root configuration object populated from .xray/config.yaml.

    All fields have safe defaults; the panel service can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    storage: StorageConfig = field(default_factory=StorageConfig)
    panel: PanelConfig = field(default_factory=PanelConfig)
    watch_storage: bool = True
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On invalid storage.backend value.
        """
        # ── Storage ───────────────────────────────────────────────────────────
        storage_raw = raw.get("storage") or {}
        backend = storage_raw.get("backend", "sqlite")
        if backend not in VALID_STORAGE_BACKENDS:
            msg = (
                f"CONFIG ERROR: Invalid storage.backend: '{backend}'. "
                f"Supported values: {sorted(VALID_STORAGE_BACKENDS)}."
            )
            print(msg, file=sys.stderr)
            raise SystemExit(1)
        storage = StorageConfig(
            backend=backend,
            path=storage_raw.get("path", DEFAULT_STORAGE_PATH),
            key=storage_raw.get("key", STORAGE_KEY),
        )

        # ── Panel ─────────────────────────────────────────────────────────────
        panel_raw = raw.get("panel") or {}
        panel = PanelConfig(
            host=panel_raw.get("host", DEFAULT_PANEL_HOST),
            port=panel_raw.get("port", DEFAULT_PANEL_PORT),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            storage=storage,
            panel=panel,
            watch_storage=raw.get("watch_storage", True),
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate panel configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).

    After loading (or defaulting), ``XRAY_PORT`` env var is applied as an override
    to ``config.panel.port`` regardless of whether a config file was found.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid ``storage.backend``, or invalid ``XRAY_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("XRAY_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found, using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        msg = (
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "The panel service refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)
    except OSError as exc:
        msg = f"CONFIG ERROR: Could not read {found_path}: {exc}"
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    if not isinstance(raw, dict):
        if raw is None:
            msg = (
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        else:
            msg = (
                f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
                "The config file must be a YAML dictionary at the top level."
            )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        msg = (
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    if version not in SUPPORTED_VERSIONS:
        msg = (
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    config = Config.from_dict(raw, path=found_path)

    _apply_env_overrides(config)

    if config.panel.host == "0.0.0.0":
        logger.warning(
            "SECURITY WARNING: the panel API is configured to bind on 0.0.0.0 (all interfaces). "
            "The allowlist would be editable from the network. "
            "Recommended: use panel.host: '127.0.0.1'."
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        storage_backend=config.storage.backend,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Currently handles:
      XRAY_PORT — overrides config.panel.port (integer; raises SystemExit(1) if invalid)
    """
    env_port = os.environ.get("XRAY_PORT")
    if env_port is not None:
        try:
            config.panel.port = int(env_port)
        except ValueError:
            msg = (
                f"CONFIG ERROR: XRAY_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )
            print(msg, file=sys.stderr)
            raise SystemExit(1)

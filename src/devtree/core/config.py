"""Project configuration loaded from .devtree/config.yaml."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".devtree"
CONFIG_FILE_NAME = "config.yaml"

_ENV_REF = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


class PortsConfig(BaseModel):
    """Base ports a dev server binds, and how far each running instance shifts them."""
    discovered: List[int] = Field(default_factory=list)
    offset_step: int = Field(default=1, ge=1)

    @field_validator("discovered")
    @classmethod
    def validate_ports(cls, v: List[int]) -> List[int]:
        for port in v:
            if not 0 < port < 65536:
                raise ValueError(f"Port out of range: {port}")
        if len(set(v)) != len(v):
            raise ValueError("Duplicate ports in ports.discovered")
        return v


class DevtreeConfig(BaseSettings):
    """Main devtree configuration."""
    project_dir: str = "."
    start_command: str = "npm run dev"
    install_command: str = "npm install"
    auto_install: bool = True
    base_branch: str = "origin/main"
    ports: PortsConfig = Field(default_factory=PortsConfig)
    # Env var -> template, e.g. {"VITE_API_URL": "http://localhost:${4000}"}
    env_mapping: Dict[str, str] = Field(default_factory=dict)
    max_instances: int = Field(default=10, ge=1)
    server_port: int = 6969
    ready_timeout: float = 30
    stop_timeout: float = 5
    step_timeout: float = 120
    echo_logs: bool = True
    log_level: str = "INFO"

    class Config:
        env_prefix = "DEVTREE_"
        extra = "ignore"


# Module-level mtime-based config cache: path -> (parsed_config, file_mtime)
_config_cache: Dict[str, tuple] = {}


def _get_cached_or_load(resolved_path: Path, loader):
    """Return cached config if file mtime unchanged, else reload."""
    key = str(resolved_path)
    try:
        current_mtime = resolved_path.stat().st_mtime
    except FileNotFoundError:
        _config_cache.pop(key, None)
        return None

    cached = _config_cache.get(key)
    if cached is not None:
        cached_result, cached_mtime = cached
        if cached_mtime == current_mtime:
            return cached_result

    result = loader(resolved_path)
    _config_cache[key] = (result, current_mtime)
    return result


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ``${VAR}`` values from the environment.

    Only whole-string references to valid variable names are expanded, so
    port templates such as ``${3000}`` in env_mapping pass through untouched.
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str):
        match = _ENV_REF.match(data)
        if not match:
            return data
        env_var = match.group(1)
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'}). "
                f"The literal string '{data}' will be used."
            )
            return data
        return value
    return data


def _load_config_from_file(config_path: Path) -> DevtreeConfig:
    """Internal loader (no caching)."""
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping, got {type(data).__name__}")
    return DevtreeConfig(**_expand_env_vars(data))


def load_config(config_dir: Path) -> DevtreeConfig:
    """Load configuration from config_dir/config.yaml.

    Uses mtime-based caching. A missing file yields defaults.
    """
    config_path = config_dir / CONFIG_FILE_NAME
    if not config_path.exists():
        logger.warning(
            f"Config file not found: {config_path}. Using default configuration."
        )
        return DevtreeConfig()

    result = _get_cached_or_load(config_path.resolve(), _load_config_from_file)
    return result if result is not None else DevtreeConfig()


def update_config(config_dir: Path, changes: Dict[str, Any]) -> DevtreeConfig:
    """Merge top-level keys into config.yaml, preserving keys we don't touch."""
    config_path = config_dir / CONFIG_FILE_NAME
    data: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

    data.update(changes)
    # Validate before writing so a bad change never lands on disk
    DevtreeConfig(**_expand_env_vars(data))

    config_dir.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    _config_cache.pop(str(config_path.resolve()), None)
    return load_config(config_dir)


def find_config_dir(start: Optional[Path] = None) -> Path:
    """Walk up from start looking for a .devtree directory.

    Falls back to start/.devtree (not created) when none exists.
    """
    start = (start or Path.cwd()).resolve()
    for candidate in [start, *start.parents]:
        config_dir = candidate / CONFIG_DIR_NAME
        if config_dir.is_dir():
            return config_dir
    return start / CONFIG_DIR_NAME


def clear_config_cache() -> None:
    """Clear the module-level config cache. Useful for tests."""
    _config_cache.clear()

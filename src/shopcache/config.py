"""Configuration management with XDG paths, atomic writes, and precedence resolution.

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.shopcache/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **User config** -- ``config.json`` in the config directory, holding any
  subset of :class:`~shopcache.models.ShopConfig` fields.
* **Project config** -- ``./shopcache.json`` in the working directory.
* **Precedence resolution** -- :func:`resolve_config` merges explicit
  arguments, ``SHOPIFY_APP_*`` environment variables, project config and
  user config into one validated :class:`~shopcache.models.ShopConfig`.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from shopcache.exceptions import ConfigError
from shopcache.models import ShopConfig

_APP_NAME = "shopcache"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "shopcache.json"

ENV_APP_HOST = "SHOPIFY_APP_HOST"
ENV_APP_SHOP = "SHOPIFY_APP_SHOP"
ENV_THEME_ID = "SHOPIFY_THEME_ID"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    return Path.home().joinpath(*default_segments)


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/shopcache/`` (default ``~/.config/shopcache/``).
    On macOS/Windows: ``~/.shopcache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/shopcache/`` (default ``~/.local/share/shopcache/``).
    On macOS/Windows: ``~/.shopcache/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write *data* to *path* via a temp file in the same directory and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Config files ---


def _read_json(path: Path, label: str) -> Optional[dict[str, Any]]:
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid {label} at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {label} at {path}: expected a JSON object")
    return data


def _user_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_user_config() -> Optional[dict[str, Any]]:
    """Load ``config.json`` from the config directory, or ``None`` if absent.

    Raises:
        ConfigError: If the file is not a JSON object.
    """
    return _read_json(_user_config_path(), "user config")


def save_user_config(config: ShopConfig) -> Path:
    """Persist *config* atomically as the user config and return its path."""
    path = _user_config_path()
    data = config.model_dump(mode="json")
    _atomic_write(path, json.dumps(data, indent=2) + "\n")
    return path


def load_project_config() -> Optional[dict[str, Any]]:
    """Load ``./shopcache.json``, or ``None`` if absent.

    Raises:
        ConfigError: If the file is not a JSON object.
    """
    return _read_json(Path.cwd() / _PROJECT_CONFIG_FILENAME, "project config")


# --- Precedence resolution ---


def _merge(base: dict[str, Any], layer: Optional[dict[str, Any]]) -> None:
    if not layer:
        return
    for key, value in layer.items():
        if value is None:
            continue
        if key == "request" and isinstance(value, dict):
            base.setdefault("request", {}).update(value)
        else:
            base[key] = value


def resolve_config(
    cli_host: Optional[str] = None,
    cli_shop: Optional[str] = None,
    cli_theme: Optional[str] = None,
) -> ShopConfig:
    """Resolve the effective :class:`~shopcache.models.ShopConfig`.

    Precedence (high to low):
        1. Explicit arguments (``cli_host``, ``cli_shop``, ``cli_theme``)
        2. Environment variables (``SHOPIFY_APP_HOST``, ``SHOPIFY_APP_SHOP``,
           ``SHOPIFY_THEME_ID``)
        3. Project config (``./shopcache.json``)
        4. User config (``~/.config/shopcache/config.json``)
        5. Model defaults

    Raises:
        ConfigError: If a config file is invalid, or no app host or shop is
            configured anywhere.
    """
    merged: dict[str, Any] = {}
    _merge(merged, load_user_config())
    _merge(merged, load_project_config())
    _merge(
        merged,
        {
            "app_host": os.environ.get(ENV_APP_HOST) or None,
            "shop": os.environ.get(ENV_APP_SHOP) or None,
            "theme_id": os.environ.get(ENV_THEME_ID) or None,
        },
    )
    _merge(merged, {"app_host": cli_host, "shop": cli_shop, "theme_id": cli_theme})

    missing = [
        env for field, env in (("app_host", ENV_APP_HOST), ("shop", ENV_APP_SHOP))
        if not merged.get(field)
    ]
    if missing:
        raise ConfigError(f"Missing configuration: set {' and '.join(missing)}")

    try:
        return ShopConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc

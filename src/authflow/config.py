"""Where authflow keeps its files, and how the effective options are built.

* The user config (:func:`load_options`, :func:`save_options`) lives in
  :func:`get_config_dir`; the session store and crash logs live in
  :func:`get_data_dir`.
* :func:`resolve_options` layers CLI overrides over ``AUTHFLOW_*``
  variables over ``./authflow.json`` over the user config.

Both the config file and the session store are written through
:func:`atomic_write`; readers never observe a partial file.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from authflow.exceptions import ConfigError
from authflow.models import AuthOptions

_APP_NAME = "authflow"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "authflow.json"
_SESSION_FILENAME = "session.json"

# Environment variable -> dotted option path.
_ENV_OVERRIDES: dict[str, str] = {
    "AUTHFLOW_USER_POOL_ID": "user_pool_id",
    "AUTHFLOW_CLIENT_ID": "user_pool_web_client_id",
    "AUTHFLOW_IDENTITY_POOL_ID": "identity_pool_id",
    "AUTHFLOW_REGION": "region",
    "AUTHFLOW_OAUTH_DOMAIN": "oauth.domain",
    "AUTHFLOW_REDIRECT_SIGN_IN": "oauth.redirect_sign_in",
    "AUTHFLOW_REDIRECT_SIGN_OUT": "oauth.redirect_sign_out",
    "AUTHFLOW_STORAGE_FILE": "storage_file",
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Linux and the BSDs follow the XDG base-directory layout."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """``~/.authflow`` on macOS and Windows."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Directory holding ``config.json``; created on first use.

    ``$XDG_CONFIG_HOME/authflow`` (``~/.config/authflow``) on XDG platforms,
    ``~/.authflow`` elsewhere.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Directory holding the session store and crash logs; created on first use.

    ``$XDG_DATA_HOME/authflow`` (``~/.local/share/authflow``) on XDG
    platforms, ``~/.authflow/data`` elsewhere.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_storage_path() -> Path:
    """Path of the default JSON session store under the data directory."""
    return get_data_dir() / _SESSION_FILENAME


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Replace *path* with *data* in one ``os.replace``.

    The temporary file lives next to *path*. *mode* (``0o600`` for the
    session store) is set before the first byte is written.
    """
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
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
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


# --- User config ---


def config_path() -> Path:
    """Path to the user config file."""
    return get_config_dir() / _CONFIG_FILENAME


def _read_json(path: Path, label: str) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid {label} at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {label} at {path}: expected a JSON object")
    return data


def load_options() -> AuthOptions:
    """Load the user configuration.

    Returns:
        The deserialised :class:`~authflow.models.AuthOptions`, or a default
        instance when no config file exists.

    Raises:
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = config_path()
    if not path.is_file():
        return AuthOptions()
    data = _read_json(path, "config")
    try:
        return AuthOptions.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_options(options: AuthOptions) -> None:
    """Persist the user configuration atomically."""
    data = options.model_dump(mode="json", exclude_none=True)
    atomic_write(config_path(), json.dumps(data, indent=2) + "\n")


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./authflow.json``.

    Returns:
        The parsed JSON object, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    return _read_json(path, "project config")


# --- Precedence resolution ---


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _set_dotted(data: dict[str, Any], dotted: str, value: Any) -> None:
    keys = dotted.split(".")
    target = data
    for key in keys[:-1]:
        if not isinstance(target.get(key), dict):
            target[key] = {}
        target = target[key]
    target[keys[-1]] = value


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for var, dotted in _ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            _set_dotted(overrides, dotted, value)
    return overrides


def resolve_options(overrides: Optional[dict[str, Any]] = None) -> AuthOptions:
    """Resolve the effective options with the full precedence chain.

    Precedence (high to low):
        1. *overrides* (CLI flags)
        2. Environment variables (``AUTHFLOW_USER_POOL_ID``, ``AUTHFLOW_CLIENT_ID`` ...)
        3. Project config (``./authflow.json``)
        4. User config (``~/.config/authflow/config.json``)
        5. Defaults

    Raises:
        ConfigError: If any layer is malformed or the merged result fails
            validation.
    """
    data = load_options().model_dump(mode="json", exclude_none=True)

    project = load_project_config()
    if project is not None:
        data = _deep_merge(data, project)

    data = _deep_merge(data, _env_overrides())

    if overrides:
        data = _deep_merge(data, overrides)

    try:
        return AuthOptions.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc

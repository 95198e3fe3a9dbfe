"""Key/value storage backing sessions and sign-in flags.

Every component that persists state (the token cache, the hosted-UI flag,
auto sign-in markers) goes through the small :class:`AuthStorage`
interface: ``get_item``, ``set_item``, ``remove_item`` and ``clear``.
Writes are idempotent upserts; nothing spans more than one key.

A storage may also expose an async ``sync()`` method. When present,
:class:`~authflow.auth.context.AuthContext` awaits it once before the first
read, so backends that hydrate lazily (remote or encrypted stores) are
fully loaded before anyone reads a key.

Two implementations ship with the package:

- :class:`MemoryStorage` -- a process-local dict, used in tests.
- :class:`FileStorage` -- a single JSON file written atomically with
  ``0o600`` permissions so tokens are never world-readable.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from authflow.config import atomic_write
from authflow.exceptions import StorageError


class AuthStorage(ABC):
    """Abstract string key/value store."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the value stored under *key*, or ``None``."""
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove *key*. Removing a missing key is a no-op."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Remove every key."""
        ...


def is_valid_storage(obj: Any) -> bool:
    """Return ``True`` if *obj* provides the four storage methods."""
    return obj is not None and all(
        callable(getattr(obj, name, None))
        for name in ("get_item", "set_item", "remove_item", "clear")
    )


def is_true_value(storage: AuthStorage, key: str) -> bool:
    """Return ``True`` only when *key* holds the string ``"true"``."""
    return storage.get_item(key) == "true"


class MemoryStorage(AuthStorage):
    """In-memory storage; contents are lost when the process exits."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    def keys(self) -> list[str]:
        """Return the stored keys, sorted."""
        return sorted(self._items)


class FileStorage(AuthStorage):
    """JSON-file storage with atomic ``0o600`` writes.

    The whole file is read once by :meth:`sync` (or lazily on first access)
    and rewritten on every mutation.

    Args:
        path: Location of the JSON file. Parent directories are created
            on the first write.

    Example::

        storage = FileStorage(Path("~/.local/share/authflow/session.json").expanduser())
        storage.set_item("authflow-auto-sign-in", "true")
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._items: Optional[dict[str, str]] = None

    @property
    def path(self) -> Path:
        """The filesystem path of the store."""
        return self._path

    async def sync(self) -> None:
        """Load the file into memory."""
        self._items = self._load()

    def get_item(self, key: str) -> Optional[str]:
        return self._data().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._data()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._data()
        if key in data:
            del data[key]
            self._save(data)

    def clear(self) -> None:
        self._items = {}
        if self._path.is_file():
            self._path.unlink()

    def keys(self) -> list[str]:
        """Return the stored keys, sorted."""
        return sorted(self._data())

    def _data(self) -> dict[str, str]:
        if self._items is None:
            self._items = self._load()
        return self._items

    def _load(self) -> dict[str, str]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise StorageError(f"Cannot read session store {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Session store {self._path} is not a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: dict[str, str]) -> None:
        try:
            atomic_write(self._path, json.dumps(data, indent=2, sort_keys=True) + "\n", mode=0o600)
        except OSError as exc:
            raise StorageError(f"Cannot write session store {self._path}: {exc}") from exc

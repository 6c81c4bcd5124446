"""Registry read access with handle tracking.

Actions read registry state (idempotency checks, state capture) through
a RegistryReader. The reader remembers every key it has open so that the
hive manager can close leftover handles under a mount point before it
tries to unload the hive.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("provisionr.core.registry")

HIVE_ALIASES = {
    "HKLM": "HKEY_LOCAL_MACHINE",
    "HKEY_LOCAL_MACHINE": "HKEY_LOCAL_MACHINE",
    "HKU": "HKEY_USERS",
    "HKEY_USERS": "HKEY_USERS",
    "HKCU": "HKEY_CURRENT_USER",
    "HKEY_CURRENT_USER": "HKEY_CURRENT_USER",
}


@dataclass
class RegistryReading:
    """A value read from the registry.

    Attributes:
        data: Value data as returned by winreg
        value_type: winreg value type constant
    """

    data: Any
    value_type: int


def split_registry_path(path: str) -> tuple[str, str]:
    """Split 'HKLM\\SOFTWARE\\X' into ('HKEY_LOCAL_MACHINE', 'SOFTWARE\\X').

    Raises:
        ValueError: If the path does not start with a known hive.
    """
    head, _, rest = path.strip("\\").partition("\\")
    hive = HIVE_ALIASES.get(head.upper())
    if hive is None:
        raise ValueError(f"Unknown registry hive in path: {path}")
    return hive, rest


def join_registry_path(*parts: str) -> str:
    """Join registry path fragments with single backslashes."""
    return "\\".join(part.strip("\\") for part in parts if part and part.strip("\\"))


def is_under(path: str, prefix: str) -> bool:
    """Check whether path is prefix or one of its subkeys (case-insensitive)."""
    path = path.lower().rstrip("\\")
    prefix = prefix.lower().rstrip("\\")
    return not prefix or path == prefix or path.startswith(prefix + "\\")


class RegistryReader:
    """Tracked read-only access to the registry.

    Example:
        reader = RegistryReader()
        value = reader.read_value("HKLM\\SOFTWARE\\Policies\\X", "Enabled")
        if value is not None:
            print(value.data)
    """

    def __init__(self) -> None:
        self._open_keys: dict[int, tuple[str, Any]] = {}
        self._lock = threading.Lock()

    @property
    def open_key_count(self) -> int:
        with self._lock:
            return len(self._open_keys)

    def open_paths(self) -> list[str]:
        """Paths of keys that are currently open."""
        with self._lock:
            return [path for path, _ in self._open_keys.values()]

    @contextmanager
    def open_key(self, path: str) -> Iterator[Any]:
        """Open a registry key for reading and track the handle.

        Raises:
            FileNotFoundError: If the key does not exist.
            OSError: If the key cannot be opened.
        """
        import winreg

        hive_name, subkey = split_registry_path(path)
        hive = getattr(winreg, hive_name)

        key = winreg.OpenKey(hive, subkey, 0, winreg.KEY_READ)
        with self._lock:
            self._open_keys[id(key)] = (path, key)
        try:
            yield key
        finally:
            with self._lock:
                self._open_keys.pop(id(key), None)
            winreg.CloseKey(key)

    def key_exists(self, path: str) -> bool:
        """Check whether a key exists."""
        try:
            with self.open_key(path):
                return True
        except OSError:
            return False

    def read_value(self, path: str, name: str) -> RegistryReading | None:
        """Read a single value.

        Args:
            path: Full key path (e.g. HKU\\Provisionr_S-1-5-21-...\\Software\\X)
            name: Value name ("" for the default value)

        Returns:
            RegistryReading, or None if the key or value does not exist
        """
        import winreg

        try:
            with self.open_key(path) as key:
                data, value_type = winreg.QueryValueEx(key, name)
                return RegistryReading(data=data, value_type=value_type)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug(f"Could not read {path}\\{name}: {e}")
            return None

    def is_readable(self, path: str) -> bool:
        """Check that a key both exists and can be enumerated."""
        import winreg

        try:
            with self.open_key(path) as key:
                winreg.QueryInfoKey(key)
                return True
        except OSError:
            return False

    def close_under(self, prefix: str) -> int:
        """Close every tracked key at or below prefix ("" closes all).

        Returns:
            Number of handles closed
        """
        with self._lock:
            matches = [
                (key_id, entry)
                for key_id, entry in self._open_keys.items()
                if is_under(entry[0], prefix)
            ]
            for key_id, _ in matches:
                del self._open_keys[key_id]

        if not matches:
            return 0

        import winreg

        for _, (path, key) in matches:
            try:
                winreg.CloseKey(key)
                logger.debug(f"Closed leftover registry handle: {path}")
            except OSError as e:
                logger.debug(f"Could not close handle {path}: {e}")

        return len(matches)

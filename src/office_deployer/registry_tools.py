"""!
@brief Read-only Windows registry helpers.
@details Thin ``winreg`` wrappers addressed by ``HKLM\\...`` style handles.
Missing keys and access failures collapse to "absent" results so detection
can degrade gracefully on hosts where part of the catalog is unreadable.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple

from . import constants

try:  # pragma: no cover - exercised through mocks on non-Windows platforms.
    import winreg
except ImportError:  # pragma: no cover - handled gracefully during tests.
    winreg = None  # type: ignore[assignment]


def _ensure_winreg() -> None:
    """!
    @brief Raise an informative error when ``winreg`` is unavailable.
    """

    if winreg is None:  # pragma: no cover - simplifies non-Windows test runs.
        raise FileNotFoundError("Windows registry APIs are unavailable on this platform")


def split_handle(handle: str) -> Tuple[int, str]:
    """!
    @brief Resolve ``HKLM\\SOFTWARE\\...`` into a ``(hive, relative path)`` pair.
    @throws ValueError when the hive prefix is unknown.
    """

    hive_name, _, relative = handle.partition("\\")
    hive = constants.REGISTRY_ROOTS.get(hive_name.upper())
    if hive is None:
        raise ValueError(f"Unknown registry hive in handle: {handle!r}")
    return hive, relative


def join_handle(parent: str, child: str) -> str:
    return parent.rstrip("\\") + "\\" + child


@contextmanager
def open_key(handle: str) -> Iterator[Any]:
    """!
    @brief Context manager around ``winreg.OpenKey`` that always closes the key.
    """

    _ensure_winreg()
    root, path = split_handle(handle)
    key = winreg.OpenKey(root, path, 0, winreg.KEY_READ)  # type: ignore[union-attr]
    try:
        yield key
    finally:
        winreg.CloseKey(key)  # type: ignore[union-attr]


def read_values(handle: str) -> Dict[str, Any] | None:
    """!
    @brief Read every value beneath ``handle``.
    @returns Mapping of value names to data, or ``None`` when the key is absent.
    The unnamed default value is exposed under the empty string.
    """

    data: Dict[str, Any] = {}
    try:
        with open_key(handle) as key:
            _, value_count, _ = winreg.QueryInfoKey(key)  # type: ignore[union-attr]
            for index in range(value_count):
                name, value, _ = winreg.EnumValue(key, index)  # type: ignore[union-attr]
                data[name] = value
    except FileNotFoundError:
        return None
    except OSError:
        return None
    return data


def list_subkeys(handle: str) -> List[str]:
    """!
    @brief Return subkey names beneath ``handle``; empty when the key is absent.
    """

    names: List[str] = []
    try:
        with open_key(handle) as key:
            subkey_count, _, _ = winreg.QueryInfoKey(key)  # type: ignore[union-attr]
            for index in range(subkey_count):
                names.append(winreg.EnumKey(key, index))  # type: ignore[union-attr]
    except FileNotFoundError:
        return []
    except OSError:
        return []
    return names


__all__ = [
    "join_handle",
    "list_subkeys",
    "open_key",
    "read_values",
    "split_handle",
]

"""!
@brief Read-only view of the host's installed-software catalog.
@details Detection never touches ``winreg`` or the filesystem directly; it
asks a :class:`StateProvider`. :class:`RegistryStateProvider` answers from the
live Windows registry, filesystem, and AppX package store, while tests supply
in-memory fixtures implementing the same methods.
"""
from __future__ import annotations

import ctypes
import os
from pathlib import Path
from typing import Any, Dict, List

from . import appx, registry_tools
from .exec_utils import ToolRunner


class StateProvider:
    """!
    @brief Query interface consumed by :mod:`office_deployer.detect`.
    @details Registry locations are ``HKLM\\...`` style handles. Every method
    must treat absence and access failure identically.
    """

    def read_values(self, handle: str) -> Dict[str, Any] | None:
        """!
        @brief Values under ``handle``; ``None`` when the key does not exist.
        """

        raise NotImplementedError

    def list_subkeys(self, handle: str) -> List[str]:
        raise NotImplementedError

    def path_exists(self, path: str) -> bool:
        raise NotImplementedError

    def file_version(self, path: str) -> str | None:
        """!
        @brief Version resource of the binary at ``path`` (``major.minor.build.revision``).
        """

        raise NotImplementedError

    def list_store_packages(self) -> List[Dict[str, str]]:
        """!
        @brief Installed store packages as ``Name``/``PackageFullName``/``Version`` mappings.
        """

        raise NotImplementedError


class RegistryStateProvider(StateProvider):
    """!
    @brief Live implementation backed by ``winreg``, the filesystem, and PowerShell.
    """

    def __init__(self, runner: ToolRunner | None = None) -> None:
        self._runner = runner or ToolRunner()

    def read_values(self, handle: str) -> Dict[str, Any] | None:
        return registry_tools.read_values(handle)

    def list_subkeys(self, handle: str) -> List[str]:
        return registry_tools.list_subkeys(handle)

    def path_exists(self, path: str) -> bool:
        try:
            return Path(os.path.expandvars(path.strip().strip('"'))).exists()
        except OSError:
            return False

    def file_version(self, path: str) -> str | None:
        return read_file_version(path)

    def list_store_packages(self) -> List[Dict[str, str]]:
        return appx.query_store_packages(self._runner)


class _FixedFileInfo(ctypes.Structure):
    _fields_ = [
        ("dwSignature", ctypes.c_uint32),
        ("dwStrucVersion", ctypes.c_uint32),
        ("dwFileVersionMS", ctypes.c_uint32),
        ("dwFileVersionLS", ctypes.c_uint32),
        ("dwProductVersionMS", ctypes.c_uint32),
        ("dwProductVersionLS", ctypes.c_uint32),
        ("dwFileFlagsMask", ctypes.c_uint32),
        ("dwFileFlags", ctypes.c_uint32),
        ("dwFileOS", ctypes.c_uint32),
        ("dwFileType", ctypes.c_uint32),
        ("dwFileSubtype", ctypes.c_uint32),
        ("dwFileDateMS", ctypes.c_uint32),
        ("dwFileDateLS", ctypes.c_uint32),
    ]


def read_file_version(path: str) -> str | None:
    """!
    @brief Read the fixed file version from a PE binary's version resource.
    @returns Dotted version string, or ``None`` off Windows or when the binary
    carries no version resource.
    """

    if os.name != "nt":
        return None
    try:
        version_dll = ctypes.windll.version  # type: ignore[attr-defined]
    except (AttributeError, OSError):  # pragma: no cover - Windows only
        return None

    target = os.path.expandvars(path.strip().strip('"'))
    size = version_dll.GetFileVersionInfoSizeW(target, None)
    if not size:
        return None
    buffer = ctypes.create_string_buffer(size)
    if not version_dll.GetFileVersionInfoW(target, 0, size, buffer):
        return None

    info_pointer = ctypes.c_void_p()
    info_length = ctypes.c_uint()
    if not version_dll.VerQueryValueW(buffer, "\\", ctypes.byref(info_pointer), ctypes.byref(info_length)):
        return None
    info = ctypes.cast(info_pointer, ctypes.POINTER(_FixedFileInfo)).contents
    return ".".join(
        str(part)
        for part in (
            info.dwFileVersionMS >> 16,
            info.dwFileVersionMS & 0xFFFF,
            info.dwFileVersionLS >> 16,
            info.dwFileVersionLS & 0xFFFF,
        )
    )


__all__ = ["RegistryStateProvider", "StateProvider", "read_file_version"]

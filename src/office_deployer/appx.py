"""!
@file appx.py
@brief Microsoft Store (AppX) package queries and removal.
@details Consumer Office is frequently preinstalled as a store package, which
the deployment tool cannot remove. These helpers drive the PowerShell AppX
cmdlets through :class:`office_deployer.exec_utils.ToolRunner`.
"""

from __future__ import annotations

import json

from . import constants, logging_ext
from .errors import ToolLaunchError
from .exec_utils import ToolRunner

__all__ = ["query_store_packages", "remove_store_package"]

_logger = logging_ext.get_human_logger()


def _powershell(command: str) -> list[str]:
    return ["powershell", "-NoProfile", "-NonInteractive", "-Command", command]


def _parse_packages(output: str) -> list[dict[str, str]]:
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        _logger.debug("Unparseable AppX query output: %r", output[:200])
        return []
    # ConvertTo-Json emits a bare object for a single match
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        return []
    return [
        {str(key): str(value) for key, value in item.items() if value is not None}
        for item in data
        if isinstance(item, dict)
    ]


def query_store_packages(runner: ToolRunner) -> list[dict[str, str]]:
    """!
    @brief List installed store packages in the Office namespace for all users.
    @details One query runs per entry of
    :data:`office_deployer.constants.STORE_PACKAGE_PATTERNS`; results are
    de-duplicated by ``PackageFullName``. Hosts without PowerShell yield an
    empty list.
    @returns Mappings with ``Name``, ``PackageFullName`` and ``Version`` keys.
    """

    packages: list[dict[str, str]] = []
    seen: set[str] = set()

    for pattern in constants.STORE_PACKAGE_PATTERNS:
        command = (
            f'Get-AppxPackage -Name "{pattern}" -AllUsers 2>$null | '
            "Select-Object Name, PackageFullName, Version | ConvertTo-Json -Compress"
        )
        try:
            result = runner.run(_powershell(command), event="appx_query")
        except ToolLaunchError as exc:
            _logger.debug("AppX query unavailable: %s", exc)
            return []
        if result.returncode != 0 or not result.stdout.strip():
            continue
        for package in _parse_packages(result.stdout):
            full_name = package.get("PackageFullName", "")
            if full_name and full_name not in seen:
                seen.add(full_name)
                packages.append(package)

    return packages


def remove_store_package(runner: ToolRunner, package_full_name: str) -> bool:
    """!
    @brief Remove one store package for all users.
    @returns ``True`` when PowerShell reported success.
    @throws ToolLaunchError when PowerShell cannot be started.
    """

    command = f'Get-AppxPackage -AllUsers "{package_full_name}" | Remove-AppxPackage -AllUsers'
    result = runner.run(
        _powershell(command),
        event="appx_remove",
        human_message=f"Removing store package {package_full_name}",
    )
    if result.returncode != 0:
        _logger.warning(
            "Failed to remove store package %s: %s",
            package_full_name,
            result.stderr.strip() or f"exit code {result.returncode}",
        )
        return False
    return True

"""!
@brief Shared fixtures for Office Deployer tests.
@details Provides an in-memory :class:`office_deployer.state.StateProvider`
and a recording process runner so detection and orchestration can be tested
without a live registry or the real deployment tool.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from office_deployer import constants, logging_ext  # noqa: E402
from office_deployer.errors import ToolLaunchError  # noqa: E402
from office_deployer.exec_utils import CommandResult  # noqa: E402
from office_deployer.state import StateProvider  # noqa: E402

UNINSTALL_64 = constants.UNINSTALL_ROOTS[0]
UNINSTALL_32 = constants.UNINSTALL_ROOTS[1]


class FakeState(StateProvider):
    """!
    @brief Dictionary-backed registry, filesystem, and store package view.
    @details Handles are matched case-insensitively like the real registry.
    """

    def __init__(self) -> None:
        self._keys: Dict[str, Tuple[str, Dict[str, object]]] = {}
        self.files: set[str] = set()
        self.versions: Dict[str, str] = {}
        self.packages: List[Dict[str, str]] = []

    def add_key(self, handle: str, values: Mapping[str, object] | None = None) -> "FakeState":
        self._keys[handle.lower()] = (handle, dict(values or {}))
        return self

    def add_uninstall(self, key_name: str, root: str = UNINSTALL_64, **values: object) -> str:
        handle = f"{root}\\{key_name}"
        self.add_key(handle, values)
        return handle

    def remove_keys(self, predicate: Callable[[str, Mapping[str, object]], bool]) -> None:
        for lowered, (handle, values) in list(self._keys.items()):
            if predicate(handle, values):
                del self._keys[lowered]

    def add_file(self, path: str, version: str | None = None) -> None:
        self.files.add(path.lower())
        if version:
            self.versions[path.lower()] = version

    def read_values(self, handle: str) -> Dict[str, object] | None:
        entry = self._keys.get(handle.lower())
        return dict(entry[1]) if entry is not None else None

    def list_subkeys(self, handle: str) -> List[str]:
        prefix = handle.lower().rstrip("\\") + "\\"
        names: List[str] = []
        for lowered, (original, _) in self._keys.items():
            if lowered.startswith(prefix) and "\\" not in lowered[len(prefix):]:
                names.append(original[len(prefix):])
        return names

    def path_exists(self, path: str) -> bool:
        return path.lower() in self.files

    def file_version(self, path: str) -> str | None:
        return self.versions.get(path.lower())

    def list_store_packages(self) -> List[Dict[str, str]]:
        return [dict(package) for package in self.packages]


class RecordingRunner:
    """!
    @brief Runner stub recording invocations and returning scripted exit codes.
    @param returncodes Mapping of event name to exit code (default 0).
    @param on_run Optional callback ``(event, command)`` used to mutate fake state.
    @param unlaunchable Events for which the process "cannot start".
    """

    def __init__(
        self,
        returncodes: Mapping[str, int] | None = None,
        on_run: Callable[[str, Sequence[str]], None] | None = None,
        unlaunchable: Iterable[str] = (),
    ) -> None:
        self.returncodes = dict(returncodes or {})
        self.on_run = on_run
        self.unlaunchable = set(unlaunchable)
        self.calls: List[Tuple[str, List[str]]] = []

    @property
    def events(self) -> List[str]:
        return [event for event, _ in self.calls]

    def run(
        self,
        command: Sequence[str],
        *,
        event: str,
        cwd: str | None = None,
        human_message: str | None = None,
    ) -> CommandResult:
        command_list = [str(part) for part in command]
        self.calls.append((event, command_list))
        if event in self.unlaunchable:
            raise ToolLaunchError(command_list[0], "file not found")
        if self.on_run is not None:
            self.on_run(event, command_list)
        return CommandResult(
            command=command_list,
            returncode=self.returncodes.get(event, 0),
            stdout="",
            stderr="",
            duration=0.0,
        )


@pytest.fixture
def fake_state() -> FakeState:
    return FakeState()


@pytest.fixture(autouse=True)
def _reset_logging_state() -> None:
    """!
    @brief Detach handlers installed by :func:`logging_ext.setup_logging` between tests.
    """

    yield
    for name in (logging_ext.HUMAN_LOGGER_NAME, logging_ext.MACHINE_LOGGER_NAME):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True

"""!
@brief Blocking external process invocation.
@details :class:`ToolRunner` is the single seam through which the deployment
tool, its self-extractor, PowerShell, and ``shutdown.exe`` are launched. Each
call emits ``*_plan`` and ``*_result`` machine events and returns a
:class:`CommandResult`; judging whether an exit code is acceptable is left to
the caller. No timeout is applied because the deployment tool owns its own
lifecycle and cannot be cancelled safely once started.
"""

from __future__ import annotations

import os
import subprocess
import time
from collections.abc import Iterable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass

from . import logging_ext
from .errors import ToolLaunchError

_SANITIZE_BLOCKLIST = {
    "PYTHONPATH",
    "PYTHONHOME",
    "PYTHONWARNINGS",
    "VIRTUAL_ENV",
    "PIP_REQUIRE_VIRTUALENV",
    "CONDA_PREFIX",
    "CONDA_DEFAULT_ENV",
    "PYENV_VERSION",
    "__PYVENV_LAUNCHER__",
}


@dataclass
class CommandResult:
    """!
    @brief Outcome of one external process invocation.
    """

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    duration: float

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


def sanitize_environment(
    *,
    base_env: Mapping[str, str] | None = None,
    remove: Iterable[str] | None = None,
) -> MutableMapping[str, str]:
    """!
    @brief Produce a child environment stripped of Python virtualenv artefacts.
    @details ``base_env`` defaults to :data:`os.environ`. Frozen builds leak
    interpreter variables that confuse child installers, so the blocklist and
    any ``remove`` names are dropped.
    """

    source = os.environ if base_env is None else base_env
    environment: MutableMapping[str, str] = {str(k): str(v) for k, v in source.items() if v is not None}
    for key in _SANITIZE_BLOCKLIST:
        environment.pop(key, None)
    for key in remove or ():
        environment.pop(key, None)
    return environment


def run_command(
    command: Sequence[str],
    *,
    event: str,
    cwd: str | None = None,
    human_message: str | None = None,
    extra: Mapping[str, object] | None = None,
) -> CommandResult:
    """!
    @brief Run ``command`` to completion and capture its output.
    @param command Command sequence to execute.
    @param event Base name for the ``*_plan``/``*_result`` machine events.
    @param cwd Working directory for the child process.
    @param human_message Optional line logged to the run log before launch.
    @param extra Metadata merged into machine event payloads.
    @returns :class:`CommandResult`; a non-zero ``returncode`` is not an error here.
    @throws ToolLaunchError when the process could not be started.
    """

    human_logger = logging_ext.get_human_logger()
    machine_logger = logging_ext.get_machine_logger()

    command_list = [str(part) for part in command]
    call: MutableMapping[str, object] = {"command": command_list}
    if cwd:
        call["cwd"] = cwd
    if extra:
        call.update({key: value for key, value in extra.items() if key not in {"event", "result"}})
    machine_logger.info(f"{event}_plan", extra={"event": f"{event}_plan", "call": dict(call)})

    if human_message:
        human_logger.info(human_message)

    start = time.monotonic()
    try:
        completed = subprocess.run(  # noqa: S603 - intentional command execution
            command_list,
            capture_output=True,
            text=True,
            check=False,
            env=sanitize_environment(),
            cwd=cwd,
        )
    except OSError as exc:
        duration = time.monotonic() - start
        machine_logger.error(
            f"{event}_error",
            extra={
                "event": f"{event}_error",
                "call": dict(call),
                "result": {"duration_ms": round(duration * 1000, 3), "error": str(exc)},
            },
        )
        raise ToolLaunchError(command_list[0], str(exc)) from exc

    duration = time.monotonic() - start
    machine_logger.info(
        f"{event}_result",
        extra={
            "event": f"{event}_result",
            "call": dict(call),
            "result": {
                "rc": completed.returncode,
                "duration_ms": round(duration * 1000, 3),
                "stdout": completed.stdout or "",
                "stderr": completed.stderr or "",
            },
        },
    )
    return CommandResult(
        command=command_list,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        duration=duration,
    )


class ToolRunner:
    """!
    @brief Injectable runner capability used by the orchestrator stages.
    @details Tests substitute a recording fake exposing the same ``run``
    signature.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        event: str,
        cwd: str | None = None,
        human_message: str | None = None,
    ) -> CommandResult:
        return run_command(command, event=event, cwd=cwd, human_message=human_message)


__all__ = ["CommandResult", "ToolRunner", "run_command", "sanitize_environment"]

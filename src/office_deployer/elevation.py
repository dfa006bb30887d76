"""!
@brief Elevation check and restart scheduling.
@details Installing or removing Office machine-wide needs an administrative
token, which is verified before any mutation. A restart, when requested, is
handed to ``shutdown.exe`` with a grace period so signed-in users are warned.
"""
from __future__ import annotations

import ctypes
import os

from . import constants, logging_ext
from .errors import ToolLaunchError
from .exec_utils import ToolRunner


def is_admin() -> bool:
    """!
    @brief Determine whether the current process token has administrative rights.
    """

    if os.name != "nt":
        return False
    try:
        shell32 = ctypes.windll.shell32  # type: ignore[attr-defined]
        return bool(shell32.IsUserAnAdmin())
    except (AttributeError, OSError):
        return False


def schedule_restart(runner: ToolRunner, delay_seconds: int = constants.RESTART_DELAY_SECONDS) -> bool:
    """!
    @brief Ask Windows to restart after ``delay_seconds``.
    @returns ``True`` when ``shutdown.exe`` accepted the request.
    """

    human_logger = logging_ext.get_human_logger()
    command = [
        "shutdown",
        "/r",
        "/t",
        str(int(delay_seconds)),
        "/c",
        "Office installation complete. This computer will restart.",
    ]
    try:
        result = runner.run(command, event="restart_schedule")
    except ToolLaunchError as exc:
        human_logger.warning("Could not schedule restart: %s", exc)
        return False
    if result.returncode != 0:
        human_logger.warning("shutdown.exe refused the restart request (exit code %s)", result.returncode)
        return False
    human_logger.info("Restart scheduled in %d seconds", delay_seconds)
    return True


__all__ = ["is_admin", "schedule_restart"]

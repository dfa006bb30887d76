"""!
@brief Error taxonomy for Office Deployer.
@details Fatal conditions derive from :class:`DeploymentError` and are caught
only at the CLI boundary, where they become an ERROR log line and a process
exit code. Non-fatal conditions derive from :class:`DeploymentWarning`; they
are instantiated, logged, and collected in the run outcome but never raised
across module boundaries.
"""
from __future__ import annotations


class DeploymentError(Exception):
    """!
    @brief Base class for fatal deployment failures.
    """

    exit_code = 1


class PrecheckError(DeploymentError):
    """!
    @brief Raised before any mutation when the host or inputs are unusable.
    @details Covers missing elevation and a missing or unparseable operator
    configuration.
    """


class FlagValidationError(PrecheckError):
    """!
    @brief Raised when mutually exclusive action selectors are combined.
    """


class AcquisitionError(DeploymentError):
    """!
    @brief Raised when the deployment tool cannot be downloaded or extracted.
    """


class ToolLaunchError(DeploymentError):
    """!
    @brief Raised when an external process could not be started at all.
    """

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"Unable to start {command}: {reason}")
        self.command = command
        self.reason = reason


class DeploymentWarning(Exception):
    """!
    @brief Base class for recorded, non-fatal conditions.
    """

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class StageExecutionWarning(DeploymentWarning):
    """!
    @brief An install, uninstall, or removal stage returned a non-zero code.
    """

    def __init__(self, stage: str, message: str, returncode: int | None = None) -> None:
        super().__init__(stage, message)
        self.returncode = returncode


class VerificationWarning(DeploymentWarning):
    """!
    @brief Post-action detection did not match the expected state.
    """


__all__ = [
    "AcquisitionError",
    "DeploymentError",
    "DeploymentWarning",
    "FlagValidationError",
    "PrecheckError",
    "StageExecutionWarning",
    "ToolLaunchError",
    "VerificationWarning",
]

"""!
@brief Command-line entry point for Office Deployer.
@details Parses operator intent, configures the run log, wires the live
registry state provider and process runner into an
:class:`office_deployer.orchestrator.InstallOrchestrator`, and converts fatal
errors into exit codes. No structured error object crosses this boundary:
the run log and the exit code are the whole contract.
"""
from __future__ import annotations

import argparse
import logging
import os
import pathlib
import tempfile
from typing import Iterable, Optional

from . import logging_ext, version
from .detect import Detector
from .errors import DeploymentError, FlagValidationError
from .exec_utils import ToolRunner
from .orchestrator import DeploymentRequest, InstallOrchestrator
from .policy import DeploymentFlags
from .state import RegistryStateProvider


def build_arg_parser() -> argparse.ArgumentParser:
    """!
    @brief Create the argument parser.
    @details Action selectors share one mutually exclusive group so invalid
    combinations are rejected before anything runs.
    """

    parser = argparse.ArgumentParser(
        prog="office-deployer",
        description="Deploy Microsoft 365 Apps / Office with the Office Deployment Tool.",
    )
    metadata = version.build_info()
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"{metadata['version']} ({metadata['build']})",
    )
    parser.add_argument("--config", metavar="PATH", help="Deployment tool configuration used for installation.")
    parser.add_argument(
        "--download-dir",
        metavar="PATH",
        help="Working directory for the deployment tool and generated configurations.",
    )
    parser.add_argument(
        "--uninstall-config-dir",
        metavar="PATH",
        help="Directory holding Uninstall-Office.xml, Uninstall-Visio.xml and Uninstall-Project.xml "
        "(default: the directory of --config).",
    )
    parser.add_argument(
        "--restart",
        action="store_true",
        help="Schedule a delayed restart after a verified installation.",
    )
    parser.add_argument(
        "--remove-consumer-office",
        action="store_true",
        help="Remove home, personal, and OEM Office editions before proceeding.",
    )

    selectors = parser.add_mutually_exclusive_group()
    selectors.add_argument("--force", action="store_true", help="Install even when Office is already present.")
    selectors.add_argument(
        "--uninstall-existing",
        action="store_true",
        help="Remove detected Office, Visio, and Project before installing.",
    )
    selectors.add_argument(
        "--skip-if-installed",
        action="store_true",
        help="Skip installation when Office is already present (default).",
    )
    selectors.add_argument("--detect-only", action="store_true", help="Report detected products and exit.")

    parser.add_argument(
        "--language",
        metavar="TAG",
        action="append",
        dest="languages",
        help="Language tag probed for localized product keys (repeatable).",
    )
    parser.add_argument("--logdir", metavar="DIR", help="Directory for the run log.")
    parser.add_argument("--quiet", action="store_true", help="Only print errors to the console.")
    parser.add_argument("--json", action="store_true", help="Mirror structured events to stdout.")
    return parser


def default_log_directory() -> pathlib.Path:
    program_data = os.environ.get("ProgramData")
    if os.name == "nt" and program_data:
        return pathlib.Path(program_data) / "OfficeDeployer" / "logs"
    return pathlib.Path.home() / ".office-deployer" / "logs"


def default_download_directory() -> pathlib.Path:
    return pathlib.Path(tempfile.gettempdir()) / "OfficeDeployer"


def _bootstrap_logging(args: argparse.Namespace) -> logging.Logger:
    logdir = pathlib.Path(args.logdir).expanduser() if args.logdir else default_log_directory()
    human_logger, _ = logging_ext.setup_logging(
        logdir.resolve(),
        console_level=logging.ERROR if args.quiet else logging.INFO,
        json_to_stdout=args.json,
    )
    return human_logger


def build_request(args: argparse.Namespace) -> DeploymentRequest:
    """!
    @brief Translate parsed arguments into a :class:`DeploymentRequest`.
    """

    flags = DeploymentFlags(
        detect_only=args.detect_only,
        skip_if_installed=args.skip_if_installed,
        force=args.force,
        uninstall_existing=args.uninstall_existing,
        remove_consumer_office=args.remove_consumer_office,
    )
    work_dir = pathlib.Path(args.download_dir).expanduser() if args.download_dir else default_download_directory()
    return DeploymentRequest(
        flags=flags,
        work_dir=work_dir.resolve(),
        config_path=pathlib.Path(args.config).expanduser().resolve() if args.config else None,
        uninstall_config_dir=(
            pathlib.Path(args.uninstall_config_dir).expanduser().resolve() if args.uninstall_config_dir else None
        ),
        restart=args.restart,
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    """!
    @brief Entry point invoked by the console script and ``python -m office_deployer``.
    @returns ``0`` on success or benign skip, ``1`` on a usage, precondition or
    acquisition failure, or the deployment tool's own non-zero exit code when
    installation was attempted but could not be verified.
    """

    parser = build_arg_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        # --help and --version exit cleanly; usage errors are fatal input errors
        if not exc.code:
            raise
        return FlagValidationError.exit_code
    human_logger = _bootstrap_logging(args)

    runner = ToolRunner()
    detector = Detector(RegistryStateProvider(runner), languages=args.languages)
    orchestrator = InstallOrchestrator(detector, runner)

    try:
        outcome = orchestrator.run(build_request(args))
    except DeploymentError as exc:
        human_logger.error("%s", exc)
        logging_ext.get_machine_logger().error(
            "run_failed",
            extra={"event": "run_failed", "error": type(exc).__name__, "detail": str(exc), "exit_code": exc.exit_code},
        )
        return exc.exit_code

    logging_ext.get_machine_logger().info("run_complete", extra={"event": "run_complete", "outcome": outcome.to_dict()})
    if outcome.warnings:
        human_logger.warning("Completed with %d warning(s)", len(outcome.warnings))
    return outcome.exit_code


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())

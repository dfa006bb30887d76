"""!
@brief Stage sequencing around the external deployment tool.
@details :class:`InstallOrchestrator` validates the request, asks the policy
for one :class:`office_deployer.policy.Action`, and then runs the implied
stages in order: consumer removal (when requested), uninstall of existing
families, install, each followed by a verification pass. Every stage is
idempotent, so an interrupted run is recovered by running it again.
Single-threaded by design; concurrent runs against the same host are not
guarded against.
"""
from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from . import appx, constants, elevation, logging_ext, odt
from .detect import FAMILY_CATALOGS, UNKNOWN_PRODUCT_ID, DetectedProduct, DetectionMethod, DetectionReport, Detector
from .errors import (
    AcquisitionError,
    DeploymentWarning,
    PrecheckError,
    StageExecutionWarning,
    ToolLaunchError,
)
from .exec_utils import CommandResult, ToolRunner
from .policy import Action, DeploymentFlags, decide, is_consumer_product, validate_flags
from .verify import VerificationResult, Verifier


@dataclass(frozen=True)
class DeploymentRequest:
    """!
    @brief Everything the operator asked for, validated at the CLI boundary.
    """

    flags: DeploymentFlags
    work_dir: Path
    config_path: Optional[Path] = None
    uninstall_config_dir: Optional[Path] = None
    restart: bool = False

    def uninstall_config(self, family: str) -> Path:
        base = self.uninstall_config_dir
        if base is None:
            base = self.config_path.parent if self.config_path is not None else self.work_dir
        return base / constants.UNINSTALL_CONFIG_FILES[family]


@dataclass
class RunOutcome:
    """!
    @brief Record of one orchestrated run.
    """

    action: Optional[Action] = None
    exit_code: int = 0
    detection: Optional[DetectionReport] = None
    consumer_detection: Optional[DetectionReport] = None
    installer_returncode: Optional[int] = None
    uninstall_results: Dict[str, bool] = field(default_factory=dict)
    verifications: List[VerificationResult] = field(default_factory=list)
    warnings: List[DeploymentWarning] = field(default_factory=list)
    restart_scheduled: bool = False
    work_dir_removed: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "action": self.action.value if self.action else None,
            "exit_code": self.exit_code,
            "installer_returncode": self.installer_returncode,
            "uninstall_results": dict(self.uninstall_results),
            "verifications": {result.stage: result.passed for result in self.verifications},
            "warnings": [str(warning) for warning in self.warnings],
            "restart_scheduled": self.restart_scheduled,
            "work_dir_removed": self.work_dir_removed,
        }


AcquireTool = Callable[[Path], Path]


class InstallOrchestrator:
    """!
    @brief Drives detection, policy, and the install/uninstall/removal stages.
    @param detector Detector bound to the host state provider.
    @param runner External process runner shared by every stage.
    @param acquire Callable guaranteeing a runnable deployment tool in a
    directory; defaults to :func:`office_deployer.odt.acquire_deployment_tool`.
    @param is_elevated Elevation probe; defaults to :func:`office_deployer.elevation.is_admin`.
    """

    def __init__(
        self,
        detector: Detector,
        runner: ToolRunner,
        *,
        acquire: Optional[AcquireTool] = None,
        is_elevated: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.detector = detector
        self.runner = runner
        self.verifier = Verifier(detector)
        self._acquire = acquire or (lambda dest: odt.acquire_deployment_tool(dest, runner))
        self._is_elevated = is_elevated or elevation.is_admin
        self._setup_path: Optional[Path] = None
        self._human = logging_ext.get_human_logger()
        self._machine = logging_ext.get_machine_logger()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, request: DeploymentRequest) -> RunOutcome:
        """!
        @brief Execute the full decision and stage sequence for ``request``.
        @returns :class:`RunOutcome` whose ``exit_code`` the CLI propagates.
        @throws PrecheckError before any mutation when the host or inputs are unusable.
        @throws AcquisitionError when the deployment tool cannot be obtained.
        @throws ToolLaunchError when the install stage cannot start the tool.
        """

        flags = validate_flags(request.flags)
        outcome = RunOutcome()
        self._setup_path = None

        if not flags.detect_only:
            self.precheck(request)

        outcome.detection = self.detector.detect()
        outcome.action = decide(outcome.detection.found, flags)
        self._human.info(
            "Office %s; action: %s",
            "detected" if outcome.detection.found else "not detected",
            outcome.action.value,
        )
        self._machine.info(
            "decision",
            extra={
                "event": "decision",
                "installed": outcome.detection.found,
                "action": outcome.action.value,
                "remove_consumer_office": flags.remove_consumer_office,
            },
        )

        if outcome.action is Action.DETECT_ONLY_REPORT:
            outcome.consumer_detection = self.detector.detect_consumer_subset()
            self.report(outcome.detection, outcome.consumer_detection)
            if flags.remove_consumer_office:
                self._human.warning("--remove-consumer-office ignored in detect-only mode; nothing was changed")
            return outcome

        if flags.remove_consumer_office:
            self.remove_consumer_office(request, outcome)

        if outcome.action is Action.SKIP_ALREADY_INSTALLED:
            self._human.info("Office is already installed; skipping installation")
            for product in outcome.detection.products:
                self._human.info("  %s", _describe(product))
            return outcome

        if outcome.action.uninstalls_first:
            self.uninstall_existing(request, outcome)

        self.install(request, outcome)
        return outcome

    def precheck(self, request: DeploymentRequest) -> None:
        """!
        @brief Fatal checks performed before any mutation.
        """

        if not self._is_elevated():
            raise PrecheckError("Administrative privileges are required; re-run from an elevated prompt")
        if request.config_path is None:
            raise PrecheckError("A configuration file is required (--config)")
        odt.validate_configuration(request.config_path)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def report(self, detection: DetectionReport, consumer: DetectionReport) -> None:
        """!
        @brief Log the detect-only inventory.
        """

        if not detection.found and not consumer.found:
            self._human.info("No Office products detected")
            return
        self._human.info("Detected %d Office product signal(s):", len(detection.products))
        for product in detection.products:
            self._human.info("  %s", _describe(product))
        if consumer.found:
            self._human.info("Detected %d consumer Office signal(s):", len(consumer.products))
            for product in consumer.products:
                self._human.info("  %s", _describe(product))

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def remove_consumer_office(self, request: DeploymentRequest, outcome: RunOutcome) -> None:
        """!
        @brief Remove home, personal, and OEM-bundled SKUs before the main action.
        @details Failures are recorded as warnings; installation is never
        aborted by this stage.
        """

        stage = "consumer-removal"
        consumer = self.detector.detect_consumer_subset()
        outcome.consumer_detection = consumer
        if not consumer.found:
            self._human.info("No consumer Office detected")
            return

        store_packages: List[DetectedProduct] = []
        unresolved: List[DetectedProduct] = []
        product_ids: List[str] = []
        for product in consumer.products:
            if product.detection_method is DetectionMethod.STORE_PACKAGE:
                store_packages.append(product)
            elif product.product_id == UNKNOWN_PRODUCT_ID:
                unresolved.append(product)
            elif product.product_id not in product_ids:
                product_ids.append(product.product_id)

        if unresolved:
            names = ", ".join(p.display_name or p.source_key for p in unresolved)
            message = f"Consumer Office detected without a removable product identifier: {names}"
            self._warn(outcome, StageExecutionWarning(stage, message))
        if not product_ids and not store_packages:
            self._verify(outcome, self.verifier.verify_consumer_removed())
            return

        removal_names = product_ids + [p.product_id for p in store_packages]
        self._human.info("Removing consumer Office: %s", ", ".join(removal_names))

        if product_ids:
            try:
                setup_path = self._tool(request)
            except AcquisitionError as exc:
                self._warn(outcome, StageExecutionWarning(stage, f"Deployment tool unavailable: {exc}"))
            else:
                removal_xml = odt.build_removal_xml(request.work_dir / constants.CONSUMER_REMOVAL_CONFIG, product_ids)
                self._run_stage(
                    outcome,
                    stage,
                    odt.configure_command(setup_path, removal_xml),
                    event="consumer_removal",
                    cwd=request.work_dir,
                )

        for package in store_packages:
            full_name = package.source_key.split(":", 1)[1]
            try:
                removed = appx.remove_store_package(self.runner, full_name)
            except ToolLaunchError as exc:
                self._warn(outcome, StageExecutionWarning(stage, str(exc)))
                continue
            if not removed:
                self._warn(outcome, StageExecutionWarning(stage, f"Store package {full_name} was not removed"))

        self._verify(outcome, self.verifier.verify_consumer_removed())

    def uninstall_existing(self, request: DeploymentRequest, outcome: RunOutcome) -> None:
        """!
        @brief Remove each detected product family with its uninstall configuration.
        @details Families are processed independently; a missing configuration
        or a failed removal is recorded for that family and the next one runs.
        Residual products are warnings, and installation continues.
        """

        for family in constants.PRODUCT_FAMILIES:
            stage = f"uninstall:{family}"
            label = constants.FAMILY_LABELS[family]
            report = self.detector.detect(FAMILY_CATALOGS[family])
            if not report.found:
                continue

            config_path = request.uninstall_config(family)
            if not config_path.is_file():
                outcome.uninstall_results[family] = False
                self._warn(outcome, StageExecutionWarning(stage, f"Uninstall configuration missing: {config_path}"))
                continue

            self._human.info("Uninstalling %s using %s", label, config_path)
            result = self._run_stage(
                outcome,
                stage,
                odt.configure_command(self._tool(request), config_path),
                event=f"uninstall_{family}",
                cwd=request.work_dir,
            )
            if result is None:
                outcome.uninstall_results[family] = False
                continue
            verification = self._verify(outcome, self.verifier.verify_removed(family))
            outcome.uninstall_results[family] = verification.passed

        failed = sorted(family for family, ok in outcome.uninstall_results.items() if not ok)
        if failed:
            self._human.warning("Continuing with installation although removal failed for: %s", ", ".join(failed))

    def install(self, request: DeploymentRequest, outcome: RunOutcome) -> None:
        """!
        @brief Acquire the tool, run the operator configuration, and verify.
        @details A non-zero tool exit code is only a warning; the verifier
        decides success. When verification fails, the tool's own non-zero
        code is propagated, or 1 when it reported success.
        """

        if request.config_path is None:
            raise PrecheckError("A configuration file is required (--config)")
        setup_path = self._tool(request)
        staged_config = odt.stage_configuration(request.config_path, request.work_dir)
        result = self.runner.run(
            odt.configure_command(setup_path, staged_config),
            event="install",
            cwd=str(request.work_dir),
            human_message=f"Installing Office using {staged_config.name}",
        )
        outcome.installer_returncode = result.returncode
        if result.returncode != 0:
            self._warn(
                outcome,
                StageExecutionWarning(
                    "install", f"Deployment tool exited with code {result.returncode}", result.returncode
                ),
            )

        verification = self._verify(outcome, self.verifier.verify_installed())
        if not verification.passed:
            outcome.exit_code = result.returncode if result.returncode != 0 else 1
            self._human.error(
                "Office installation could not be verified; working directory kept at %s", request.work_dir
            )
            return

        logging_ext.log_success("Office installation completed")
        if request.restart:
            outcome.restart_scheduled = elevation.schedule_restart(self.runner)
        outcome.work_dir_removed = self._cleanup(request.work_dir)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _tool(self, request: DeploymentRequest) -> Path:
        if self._setup_path is None:
            request.work_dir.mkdir(parents=True, exist_ok=True)
            self._setup_path = self._acquire(request.work_dir)
        return self._setup_path

    def _run_stage(
        self,
        outcome: RunOutcome,
        stage: str,
        command: Sequence[str],
        *,
        event: str,
        cwd: Path,
    ) -> Optional[CommandResult]:
        try:
            result = self.runner.run(command, event=event, cwd=str(cwd))
        except ToolLaunchError as exc:
            self._warn(outcome, StageExecutionWarning(stage, str(exc)))
            return None
        if result.returncode != 0:
            self._warn(
                outcome,
                StageExecutionWarning(
                    stage, f"Deployment tool exited with code {result.returncode}", result.returncode
                ),
            )
        return result

    def _verify(self, outcome: RunOutcome, result: VerificationResult) -> VerificationResult:
        outcome.verifications.append(result)
        warning = result.to_warning()
        if warning is not None:
            outcome.warnings.append(warning)
        return result

    def _warn(self, outcome: RunOutcome, warning: DeploymentWarning) -> None:
        outcome.warnings.append(warning)
        self._human.warning("%s", warning)

    def _cleanup(self, work_dir: Path) -> bool:
        if not work_dir.exists():
            return False
        try:
            shutil.rmtree(work_dir)
        except OSError as exc:
            self._human.warning("Could not remove working directory %s: %s", work_dir, exc)
            return False
        self._human.info("Removed working directory %s", work_dir)
        return True


def _describe(product: DetectedProduct) -> str:
    details = [product.product_id, product.detection_method.value]
    if is_consumer_product(product):
        details.append("consumer")
    name = product.display_name or product.product_id
    version = product.version or "unknown version"
    return f"{name} {version} [{', '.join(details)}]"


__all__ = ["DeploymentRequest", "InstallOrchestrator", "RunOutcome"]

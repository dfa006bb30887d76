"""!
@brief Post-stage verification by re-detection.
@details The deployment tool's exit code is not trusted on its own; after
each install, uninstall, or removal stage the detector runs again and the
observed state decides whether the stage converged. Failed verification is
reported, never compensated.
"""
from __future__ import annotations

from dataclasses import dataclass

from . import constants, logging_ext
from .detect import FAMILY_CATALOGS, SUITE_CATALOG, DetectionReport, Detector
from .errors import VerificationWarning


@dataclass(frozen=True)
class VerificationResult:
    """!
    @brief Outcome of one verification pass.
    """

    stage: str
    passed: bool
    report: DetectionReport

    def to_warning(self) -> VerificationWarning | None:
        if self.passed:
            return None
        if self.report.found:
            residual = ", ".join(
                product.display_name or product.product_id for product in self.report.products
            )
            return VerificationWarning(self.stage, f"Products still detected: {residual}")
        return VerificationWarning(self.stage, "Expected products were not detected")


class Verifier:
    """!
    @brief Confirms convergence toward the desired presence or absence state.
    """

    def __init__(self, detector: Detector) -> None:
        self.detector = detector

    def verify_installed(self) -> VerificationResult:
        report = self.detector.detect(SUITE_CATALOG)
        return self._log(VerificationResult("install", report.found, report), "Office installation verified")

    def verify_removed(self, family: str) -> VerificationResult:
        report = self.detector.detect(FAMILY_CATALOGS[family])
        return self._log(
            VerificationResult(f"uninstall:{family}", not report.found, report),
            f"{constants.FAMILY_LABELS[family]} removal verified",
        )

    def verify_consumer_removed(self) -> VerificationResult:
        report = self.detector.detect_consumer_subset()
        return self._log(
            VerificationResult("consumer-removal", not report.found, report),
            "Consumer Office removal verified",
        )

    @staticmethod
    def _log(result: VerificationResult, success_message: str) -> VerificationResult:
        if result.passed:
            logging_ext.log_success(success_message)
        else:
            logging_ext.get_human_logger().warning("Verification failed: %s", result.to_warning())
        logging_ext.get_machine_logger().info(
            "verification",
            extra={"event": "verification", "stage": result.stage, "passed": result.passed},
        )
        return result


__all__ = ["VerificationResult", "Verifier"]

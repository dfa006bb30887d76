"""!
@brief End-to-end orchestration tests against in-memory host state.
@details The deployment tool is never executed: a recording runner scripts
exit codes and mutates the fake registry the way a real install or removal
would, so verification observes the result.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Sequence

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from office_deployer import constants, logging_ext  # noqa: E402
from office_deployer.detect import Detector  # noqa: E402
from office_deployer.errors import (  # noqa: E402
    AcquisitionError,
    FlagValidationError,
    PrecheckError,
    StageExecutionWarning,
    ToolLaunchError,
    VerificationWarning,
)
from office_deployer.orchestrator import DeploymentRequest, InstallOrchestrator  # noqa: E402
from office_deployer.policy import Action, DeploymentFlags  # noqa: E402

from conftest import UNINSTALL_32, FakeState, RecordingRunner  # noqa: E402

CONFIG_XML = """<Configuration>
  <Add OfficeClientEdition="64" Channel="MonthlyEnterprise">
    <Product ID="O365ProPlusRetail">
      <Language ID="en-us" />
    </Product>
  </Add>
  <Display Level="None" AcceptEULA="TRUE" />
</Configuration>
"""

UNINSTALL_XML = """<Configuration>
  <Remove All="FALSE">
    <Product ID="O365ProPlusRetail"><Language ID="all" /></Product>
  </Remove>
</Configuration>
"""


def _install_suite(state: FakeState) -> None:
    state.add_uninstall(
        "O365ProPlusRetail - en-us",
        DisplayName="Microsoft 365 Apps for enterprise - en-us",
        DisplayVersion="16.0.17928.20114",
    )


def _install_visio(state: FakeState) -> None:
    state.add_uninstall(
        "VisioProRetail - en-us",
        root=UNINSTALL_32,
        DisplayName="Microsoft Visio - en-us",
        DisplayVersion="16.0.17928.20114",
    )


def _install_home_student(state: FakeState) -> None:
    state.add_uninstall(
        "HomeStudent2021Retail - en-us",
        DisplayName="Microsoft Office Home and Student 2021 - en-us",
        DisplayVersion="16.0.14332.20400",
    )


def _remove_matching(state: FakeState, fragment: str) -> None:
    state.remove_keys(lambda handle, _values: fragment.lower() in handle.lower())


class Harness:
    """!
    @brief Bundles the fake host, the recording runner, and the orchestrator.
    """

    def __init__(self, tmp_path: Path, state: FakeState, runner: RecordingRunner, *, elevated: bool = True) -> None:
        self.state = state
        self.runner = runner
        self.acquired: List[Path] = []
        self.config_dir = tmp_path / "configs"
        self.config_dir.mkdir()
        self.config_path = self.config_dir / "Configuration.xml"
        self.config_path.write_text(CONFIG_XML, encoding="utf-8")
        self.work_dir = tmp_path / "work"
        self.orchestrator = InstallOrchestrator(
            Detector(state, languages=("en-us",)),
            runner,
            acquire=self._acquire,
            is_elevated=lambda: elevated,
        )

    def _acquire(self, dest: Path) -> Path:
        self.acquired.append(dest)
        return dest / constants.ODT_SETUP_NAME

    def request(self, **flags: bool) -> DeploymentRequest:
        restart = flags.pop("restart", False)
        return DeploymentRequest(
            flags=DeploymentFlags(**flags),
            work_dir=self.work_dir,
            config_path=self.config_path,
            restart=restart,
        )


def _installs_suite_on(state: FakeState, *events: str):
    def on_run(event: str, command: Sequence[str]) -> None:
        if event == "install" or event in events:
            _install_suite(state)

    return on_run


class TestScenarios:
    """!
    @brief Operator-visible flows from a clean or populated host.
    """

    def test_clean_host_installs_and_verifies(self, tmp_path: Path, fake_state: FakeState) -> None:
        runner = RecordingRunner(on_run=_installs_suite_on(fake_state))
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request())

        assert outcome.action is Action.INSTALL
        assert outcome.exit_code == 0
        assert runner.events == ["install"]
        event, command = runner.calls[0]
        assert command[1] == "/configure"
        assert Path(command[2]).name == "Configuration.xml"
        assert Path(command[2]).parent == harness.work_dir
        assert harness.acquired == [harness.work_dir]
        assert [result.stage for result in outcome.verifications] == ["install"]
        assert outcome.verifications[0].passed
        assert outcome.work_dir_removed
        assert not harness.work_dir.exists()
        assert outcome.warnings == []

    def test_installed_suite_is_skipped_without_external_processes(
        self, tmp_path: Path, fake_state: FakeState
    ) -> None:
        _install_suite(fake_state)
        runner = RecordingRunner()
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request())

        assert outcome.action is Action.SKIP_ALREADY_INSTALLED
        assert outcome.exit_code == 0
        assert runner.calls == []
        assert harness.acquired == []

    def test_detect_only_reports_every_product(
        self, tmp_path: Path, fake_state: FakeState, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.INFO, logger=logging_ext.HUMAN_LOGGER_NAME)
        _install_suite(fake_state)
        fake_state.add_uninstall(
            "Office15.STANDARD",
            DisplayName="Microsoft Office Standard 2013",
            DisplayVersion="15.0.4569.1506",
        )
        runner = RecordingRunner()
        harness = Harness(tmp_path, fake_state, runner, elevated=False)
        request = DeploymentRequest(flags=DeploymentFlags(detect_only=True), work_dir=harness.work_dir)

        outcome = harness.orchestrator.run(request)

        assert outcome.action is Action.DETECT_ONLY_REPORT
        assert outcome.exit_code == 0
        assert len(outcome.detection.products) == 2
        assert runner.calls == []
        assert harness.acquired == []
        assert not harness.work_dir.exists()
        assert "Microsoft 365 Apps for enterprise - en-us 16.0.17928.20114" in caplog.text
        assert "Microsoft Office Standard 2013 15.0.4569.1506" in caplog.text

    def test_consumer_removal_precedes_install(self, tmp_path: Path, fake_state: FakeState) -> None:
        _install_home_student(fake_state)
        removal_configs: List[str] = []

        def on_run(event: str, command: Sequence[str]) -> None:
            if event == "consumer_removal":
                removal_configs.append(Path(command[2]).read_text(encoding="utf-8"))
                _remove_matching(fake_state, "HomeStudent")
            elif event == "install":
                _install_suite(fake_state)

        runner = RecordingRunner(on_run=on_run)
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request(remove_consumer_office=True))

        assert outcome.action is Action.INSTALL
        assert runner.events == ["consumer_removal", "install"]
        assert 'ID="HomeStudent2021Retail"' in removal_configs[0]
        assert "<Remove>" in removal_configs[0]
        assert [(r.stage, r.passed) for r in outcome.verifications] == [
            ("consumer-removal", True),
            ("install", True),
        ]
        assert outcome.exit_code == 0
        assert harness.acquired == [harness.work_dir]

    def test_consumer_click_to_run_sharing_binaries_is_replaced(self, tmp_path: Path, fake_state: FakeState) -> None:
        word = r"C:\Program Files\Microsoft Office\root\Office16\WINWORD.EXE"
        _install_home_student(fake_state)
        fake_state.add_key(
            constants.C2R_CONFIGURATION_KEY,
            {"ProductReleaseIds": "HomeStudent2021Retail", "Platform": "x64"},
        )
        fake_state.add_key(f"{constants.APP_PATHS_ROOT}\\WINWORD.EXE", {"": word})
        fake_state.add_file(word, version="16.0.14332.20400")

        def on_run(event: str, command: Sequence[str]) -> None:
            if event == "consumer_removal":
                fake_state.remove_keys(
                    lambda handle, values: "homestudent" in handle.lower()
                    or "homestudent" in str(values.get("ProductReleaseIds", "")).lower()
                )
            elif event == "install":
                _install_suite(fake_state)

        runner = RecordingRunner(on_run=on_run)
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request(remove_consumer_office=True))

        assert not outcome.detection.found
        assert outcome.action is Action.INSTALL
        assert runner.events == ["consumer_removal", "install"]
        assert [(r.stage, r.passed) for r in outcome.verifications] == [
            ("consumer-removal", True),
            ("install", True),
        ]
        assert outcome.exit_code == 0

    def test_consumer_entry_without_release_id_is_warned(self, tmp_path: Path, fake_state: FakeState) -> None:
        fake_state.add_uninstall(
            "{91140000-0011-0000-0000-0000000FF1CE}",
            DisplayName="Office 365 Home Premium",
            DisplayVersion="15.0.4420.1017",
        )
        runner = RecordingRunner(on_run=_installs_suite_on(fake_state))
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request(remove_consumer_office=True))

        assert outcome.action is Action.INSTALL
        assert runner.events == ["install"]
        stage_warnings = [w for w in outcome.warnings if isinstance(w, StageExecutionWarning)]
        assert [w.stage for w in stage_warnings] == ["consumer-removal"]
        assert "Office 365 Home Premium" in str(stage_warnings[0])
        assert [(r.stage, r.passed) for r in outcome.verifications] == [
            ("consumer-removal", False),
            ("install", True),
        ]
        assert outcome.exit_code == 0

    def test_non_zero_install_code_with_verified_result_succeeds(
        self, tmp_path: Path, fake_state: FakeState
    ) -> None:
        runner = RecordingRunner(returncodes={"install": 17}, on_run=_installs_suite_on(fake_state))
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request())

        assert outcome.exit_code == 0
        assert outcome.installer_returncode == 17
        assert len(outcome.warnings) == 1
        warning = outcome.warnings[0]
        assert isinstance(warning, StageExecutionWarning)
        assert warning.stage == "install"
        assert warning.returncode == 17
        assert outcome.verifications[0].passed


class TestInstallVerification:
    """!
    @brief Exit code propagation when the verifier cannot confirm the install.
    """

    def test_failed_verification_propagates_tool_code(self, tmp_path: Path, fake_state: FakeState) -> None:
        runner = RecordingRunner(returncodes={"install": 17})
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request())

        assert outcome.exit_code == 17
        assert any(isinstance(w, VerificationWarning) for w in outcome.warnings)
        assert harness.work_dir.is_dir()
        assert not outcome.work_dir_removed

    def test_failed_verification_after_zero_code_exits_one(self, tmp_path: Path, fake_state: FakeState) -> None:
        runner = RecordingRunner()
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request(restart=True))

        assert outcome.exit_code == 1
        assert not outcome.restart_scheduled
        assert "restart_schedule" not in runner.events

    def test_restart_scheduled_after_verified_install(self, tmp_path: Path, fake_state: FakeState) -> None:
        runner = RecordingRunner(on_run=_installs_suite_on(fake_state))
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request(restart=True))

        assert outcome.restart_scheduled
        assert runner.events == ["install", "restart_schedule"]
        assert runner.calls[-1][1][:4] == ["shutdown", "/r", "/t", str(constants.RESTART_DELAY_SECONDS)]

    def test_force_reinstalls_over_existing_suite(self, tmp_path: Path, fake_state: FakeState) -> None:
        _install_suite(fake_state)
        runner = RecordingRunner()
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request(force=True))

        assert outcome.action is Action.FORCE_INSTALL
        assert runner.events == ["install"]
        assert outcome.exit_code == 0


class TestUninstallExisting:
    """!
    @brief Per-family removal ahead of a clean install.
    """

    def test_each_detected_family_uses_its_configuration(self, tmp_path: Path, fake_state: FakeState) -> None:
        _install_suite(fake_state)
        _install_visio(fake_state)

        def on_run(event: str, command: Sequence[str]) -> None:
            if event == "uninstall_office":
                _remove_matching(fake_state, "O365ProPlusRetail")
            elif event == "uninstall_visio":
                _remove_matching(fake_state, "VisioProRetail")
            elif event == "install":
                _install_suite(fake_state)

        runner = RecordingRunner(on_run=on_run)
        harness = Harness(tmp_path, fake_state, runner)
        for family in (constants.FAMILY_OFFICE, constants.FAMILY_VISIO):
            (harness.config_dir / constants.UNINSTALL_CONFIG_FILES[family]).write_text(UNINSTALL_XML, encoding="utf-8")

        outcome = harness.orchestrator.run(harness.request(uninstall_existing=True))

        assert outcome.action is Action.UNINSTALL_THEN_INSTALL
        assert runner.events == ["uninstall_office", "uninstall_visio", "install"]
        assert Path(runner.calls[0][1][2]) == harness.config_dir / "Uninstall-Office.xml"
        assert Path(runner.calls[1][1][2]) == harness.config_dir / "Uninstall-Visio.xml"
        assert outcome.uninstall_results == {"office": True, "visio": True}
        assert outcome.exit_code == 0
        assert outcome.warnings == []

    def test_missing_family_configuration_is_recorded_and_install_continues(
        self, tmp_path: Path, fake_state: FakeState
    ) -> None:
        _install_suite(fake_state)
        _install_visio(fake_state)

        def on_run(event: str, command: Sequence[str]) -> None:
            if event == "uninstall_office":
                _remove_matching(fake_state, "O365ProPlusRetail")
            elif event == "install":
                _install_suite(fake_state)

        runner = RecordingRunner(on_run=on_run)
        harness = Harness(tmp_path, fake_state, runner)
        (harness.config_dir / "Uninstall-Office.xml").write_text(UNINSTALL_XML, encoding="utf-8")

        outcome = harness.orchestrator.run(harness.request(uninstall_existing=True))

        assert runner.events == ["uninstall_office", "install"]
        assert outcome.uninstall_results == {"office": True, "visio": False}
        assert len(outcome.warnings) == 1
        assert "Uninstall-Visio.xml" in str(outcome.warnings[0])
        assert outcome.exit_code == 0

    def test_residual_products_are_warnings(self, tmp_path: Path, fake_state: FakeState) -> None:
        _install_suite(fake_state)
        runner = RecordingRunner(returncodes={"uninstall_office": 30015})
        harness = Harness(tmp_path, fake_state, runner)
        (harness.config_dir / "Uninstall-Office.xml").write_text(UNINSTALL_XML, encoding="utf-8")

        outcome = harness.orchestrator.run(harness.request(uninstall_existing=True))

        assert runner.events == ["uninstall_office", "install"]
        assert outcome.uninstall_results == {"office": False}
        stages = [w.stage for w in outcome.warnings]
        assert stages == ["uninstall:office", "uninstall:office"]
        assert outcome.exit_code == 0

    def test_explicit_uninstall_config_directory(self, tmp_path: Path, fake_state: FakeState) -> None:
        harness = Harness(tmp_path, fake_state, RecordingRunner())
        other = tmp_path / "uninstall"
        request = DeploymentRequest(
            flags=DeploymentFlags(uninstall_existing=True),
            work_dir=harness.work_dir,
            config_path=harness.config_path,
            uninstall_config_dir=other,
        )

        assert request.uninstall_config(constants.FAMILY_PROJECT) == other / "Uninstall-Project.xml"


class TestConsumerRemoval:
    """!
    @brief Consumer SKU and store package handling.
    """

    def test_store_packages_are_removed_without_the_deployment_tool(
        self, tmp_path: Path, fake_state: FakeState
    ) -> None:
        _install_suite(fake_state)
        fake_state.packages = [
            {
                "Name": "Microsoft.MicrosoftOfficeHub",
                "PackageFullName": "Microsoft.MicrosoftOfficeHub_18.2301.1131.0_x64__8wekyb3d8bbwe",
                "Version": "18.2301.1131.0",
            }
        ]

        def on_run(event: str, command: Sequence[str]) -> None:
            if event == "appx_remove":
                fake_state.packages = []

        runner = RecordingRunner(on_run=on_run)
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request(remove_consumer_office=True))

        assert outcome.action is Action.SKIP_ALREADY_INSTALLED
        assert runner.events == ["appx_remove"]
        assert "Microsoft.MicrosoftOfficeHub_18.2301.1131.0_x64__8wekyb3d8bbwe" in runner.calls[0][1][-1]
        assert harness.acquired == []
        assert outcome.verifications[0].passed

    def test_failed_consumer_removal_does_not_abort_install(self, tmp_path: Path, fake_state: FakeState) -> None:
        _install_home_student(fake_state)
        runner = RecordingRunner(returncodes={"consumer_removal": 1603}, on_run=_installs_suite_on(fake_state))
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request(remove_consumer_office=True))

        assert runner.events == ["consumer_removal", "install"]
        assert [(r.stage, r.passed) for r in outcome.verifications] == [
            ("consumer-removal", False),
            ("install", True),
        ]
        assert {w.stage for w in outcome.warnings} == {"consumer-removal"}
        assert outcome.exit_code == 0

    def test_detect_only_never_removes_consumer_office(
        self, tmp_path: Path, fake_state: FakeState, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.INFO, logger=logging_ext.HUMAN_LOGGER_NAME)
        _install_home_student(fake_state)
        runner = RecordingRunner()
        harness = Harness(tmp_path, fake_state, runner)

        outcome = harness.orchestrator.run(harness.request(detect_only=True, remove_consumer_office=True))

        assert outcome.action is Action.DETECT_ONLY_REPORT
        assert runner.calls == []
        assert outcome.consumer_detection is not None
        assert outcome.consumer_detection.product_ids() == ("HomeStudent2021Retail",)
        assert fake_state.read_values(f"{constants.UNINSTALL_ROOTS[0]}\\HomeStudent2021Retail - en-us") is not None
        assert "ignored in detect-only mode" in caplog.text


class TestFatalConditions:
    """!
    @brief Conditions that abort the run before or during installation.
    """

    def test_conflicting_flags_abort_before_detection(self, tmp_path: Path, fake_state: FakeState) -> None:
        runner = RecordingRunner()
        harness = Harness(tmp_path, fake_state, runner)

        with pytest.raises(FlagValidationError):
            harness.orchestrator.run(harness.request(force=True, uninstall_existing=True))
        assert runner.calls == []

    def test_missing_elevation_is_fatal_before_mutation(self, tmp_path: Path, fake_state: FakeState) -> None:
        runner = RecordingRunner()
        harness = Harness(tmp_path, fake_state, runner, elevated=False)

        with pytest.raises(PrecheckError, match="Administrative"):
            harness.orchestrator.run(harness.request())
        assert runner.calls == []
        assert harness.acquired == []

    def test_missing_configuration_is_fatal(self, tmp_path: Path, fake_state: FakeState) -> None:
        runner = RecordingRunner()
        harness = Harness(tmp_path, fake_state, runner)
        request = DeploymentRequest(flags=DeploymentFlags(), work_dir=harness.work_dir)

        with pytest.raises(PrecheckError, match="--config"):
            harness.orchestrator.run(request)
        assert runner.calls == []

    def test_malformed_configuration_is_fatal(self, tmp_path: Path, fake_state: FakeState) -> None:
        runner = RecordingRunner()
        harness = Harness(tmp_path, fake_state, runner)
        harness.config_path.write_text("<Configuration><Display Level='None' /></Configuration>", encoding="utf-8")

        with pytest.raises(PrecheckError, match="<Add>"):
            harness.orchestrator.run(harness.request())
        assert runner.calls == []

    def test_acquisition_failure_propagates(self, tmp_path: Path, fake_state: FakeState) -> None:
        runner = RecordingRunner()
        harness = Harness(tmp_path, fake_state, runner)

        def failing_acquire(dest: Path) -> Path:
            raise AcquisitionError("download failed")

        orchestrator = InstallOrchestrator(
            Detector(fake_state, languages=("en-us",)),
            runner,
            acquire=failing_acquire,
            is_elevated=lambda: True,
        )

        with pytest.raises(AcquisitionError):
            orchestrator.run(harness.request())
        assert runner.calls == []

    def test_unlaunchable_installer_propagates(self, tmp_path: Path, fake_state: FakeState) -> None:
        runner = RecordingRunner(unlaunchable={"install"})
        harness = Harness(tmp_path, fake_state, runner)

        with pytest.raises(ToolLaunchError) as excinfo:
            harness.orchestrator.run(harness.request())
        assert excinfo.value.exit_code == 1


def test_outcome_serialises_for_run_log(tmp_path: Path, fake_state: FakeState) -> None:
    runner = RecordingRunner(returncodes={"install": 17}, on_run=_installs_suite_on(fake_state))
    harness = Harness(tmp_path, fake_state, runner)

    payload = harness.orchestrator.run(harness.request()).to_dict()

    assert payload["action"] == "Install"
    assert payload["exit_code"] == 0
    assert payload["installer_returncode"] == 17
    assert payload["verifications"] == {"install": True}
    assert payload["warnings"] == ["[install] Deployment tool exited with code 17"]
    assert payload["work_dir_removed"] is True

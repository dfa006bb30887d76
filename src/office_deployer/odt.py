"""!
@brief Office Deployment Tool (ODT) acquisition and configuration helpers.
@details Downloads and extracts the vendor deployment tool into the working
directory, validates the operator's configuration before anything is
mutated, and writes the removal configuration used to strip consumer SKUs.
The configuration schema itself belongs to the vendor tool; only the minimum
structure needed to reject obviously broken files is checked here.
"""

from __future__ import annotations

import shutil
import urllib.error
import urllib.request
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Sequence
from xml.sax.saxutils import quoteattr

from . import constants, logging_ext, version
from .errors import AcquisitionError, PrecheckError, ToolLaunchError
from .exec_utils import ToolRunner

# ---------------------------------------------------------------------------
# Configuration files
# ---------------------------------------------------------------------------


def validate_configuration(path: Path | str) -> Path:
    """!
    @brief Ensure the operator configuration exists and looks like an install config.
    @details The file must parse as XML with a ``Configuration`` root holding
    at least one ``Add`` element.
    @throws PrecheckError describing the first problem found.
    """

    config_path = Path(path).expanduser()
    if not config_path.is_file():
        raise PrecheckError(f"Configuration file not found: {config_path}")
    try:
        root = ET.parse(config_path).getroot()
    except (ET.ParseError, OSError) as exc:
        raise PrecheckError(f"Configuration file could not be parsed: {config_path}: {exc}") from exc
    if root.tag != "Configuration":
        raise PrecheckError(f"Configuration root element must be <Configuration>, found <{root.tag}>")
    if root.find("Add") is None:
        raise PrecheckError(f"Configuration has no <Add> element: {config_path}")
    return config_path


def stage_configuration(config_path: Path, work_dir: Path) -> Path:
    """!
    @brief Copy the operator configuration into the working directory.
    @returns Path of the copy handed to the deployment tool.
    """

    work_dir.mkdir(parents=True, exist_ok=True)
    destination = work_dir / config_path.name
    if destination.resolve() != config_path.resolve():
        shutil.copy2(config_path, destination)
    return destination


def build_removal_xml(
    output_path: Path | str,
    product_ids: Sequence[str],
    *,
    quiet: bool = True,
    force_app_shutdown: bool = True,
) -> Path:
    """!
    @brief Write an ODT configuration removing exactly ``product_ids``.
    @param output_path Destination of the XML file.
    @param product_ids Release identifiers to remove, all languages.
    @param quiet Use the silent display level.
    @param force_app_shutdown Close running Office applications first.
    @returns Path to the written XML file.
    """

    if not product_ids:
        raise ValueError("At least one product identifier is required")

    level = "None" if quiet else "Full"
    products_xml = "\n".join(
        f"    <Product ID={quoteattr(pid)}>\n      <Language ID=\"all\" />\n    </Product>" for pid in product_ids
    )
    force_shutdown = ""
    if force_app_shutdown:
        force_shutdown = '\n  <Property Name="FORCEAPPSHUTDOWN" Value="TRUE" />'

    content = f"""<Configuration>
  <Remove>
{products_xml}
  </Remove>
  <Display Level="{level}" AcceptEULA="TRUE" />{force_shutdown}
</Configuration>
"""
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def configure_command(setup_path: Path, config_path: Path) -> list[str]:
    return [str(setup_path), "/configure", str(config_path)]


# ---------------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------------


def download_tool(dest_dir: Path, url: str = constants.ODT_DOWNLOAD_URL) -> Path:
    """!
    @brief Fetch the self-extracting deployment tool package.
    @details A single blocking request; there is no retry.
    @throws AcquisitionError on any network or filesystem failure.
    """

    human_logger = logging_ext.get_human_logger()
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest_path = dest_dir / constants.ODT_PACKAGE_NAME

    human_logger.info("Downloading Office Deployment Tool from %s", url)
    request = urllib.request.Request(url, headers={"User-Agent": version.user_agent()})
    try:
        with urllib.request.urlopen(request, timeout=constants.ODT_DOWNLOAD_TIMEOUT) as response:
            content = response.read()
    except (urllib.error.URLError, OSError) as exc:
        raise AcquisitionError(f"Failed to download the Office Deployment Tool: {exc}") from exc
    if not content:
        raise AcquisitionError("Office Deployment Tool download returned no data")

    try:
        dest_path.write_bytes(content)
    except OSError as exc:
        raise AcquisitionError(f"Failed to save the Office Deployment Tool: {exc}") from exc
    human_logger.info("Downloaded %s (%d bytes)", dest_path, len(content))
    return dest_path


def extract_tool(package: Path, dest_dir: Path, runner: ToolRunner) -> Path:
    """!
    @brief Run the self-extractor and return the extracted ``setup.exe``.
    @throws AcquisitionError when extraction fails or produces no entrypoint.
    """

    try:
        result = runner.run(
            [str(package), f"/extract:{dest_dir}", "/quiet"],
            event="odt_extract",
            cwd=str(dest_dir),
            human_message=f"Extracting {package.name}",
        )
    except ToolLaunchError as exc:
        raise AcquisitionError(f"Failed to run the deployment tool extractor: {exc.reason}") from exc

    setup_path = dest_dir / constants.ODT_SETUP_NAME
    if result.returncode != 0 or not setup_path.is_file():
        raise AcquisitionError(
            f"Deployment tool extraction failed (exit code {result.returncode}); {setup_path} not present"
        )
    return setup_path


def acquire_deployment_tool(
    dest_dir: Path,
    runner: ToolRunner,
    *,
    url: str = constants.ODT_DOWNLOAD_URL,
) -> Path:
    """!
    @brief Guarantee a runnable ``setup.exe`` exists in ``dest_dir``.
    @details A previously extracted entrypoint is reused so re-running an
    interrupted deployment does not download again.
    @throws AcquisitionError when the tool cannot be obtained.
    """

    setup_path = dest_dir / constants.ODT_SETUP_NAME
    if setup_path.is_file():
        logging_ext.get_human_logger().info("Reusing deployment tool at %s", setup_path)
        return setup_path
    package = download_tool(dest_dir, url)
    return extract_tool(package, dest_dir, runner)


__all__ = [
    "acquire_deployment_tool",
    "build_removal_xml",
    "configure_command",
    "download_tool",
    "extract_tool",
    "stage_configuration",
    "validate_configuration",
]

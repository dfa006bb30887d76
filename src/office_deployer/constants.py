"""!
@brief Static data for Office Deployer.
@details Centralises product identifiers, registry locations, language tags,
the flagship application tables, and deployment tool endpoints so detection,
policy, and orchestration code work from one versioned source of truth.
Registry locations are expressed as ``HKLM\\...`` style handles which
:mod:`office_deployer.registry_tools` resolves to native hives.
"""
from __future__ import annotations

from typing import Dict, Mapping, Tuple

try:  # pragma: no cover - Windows registry handles are optional on test hosts.
    import winreg
except ImportError:  # pragma: no cover - test scaffolding supplies substitutes.
    winreg = None  # type: ignore[assignment]


if winreg is not None:  # pragma: no branch - deterministic assignments.
    HKLM = winreg.HKEY_LOCAL_MACHINE
    HKCU = winreg.HKEY_CURRENT_USER
    HKCR = winreg.HKEY_CLASSES_ROOT
    HKU = winreg.HKEY_USERS
else:  # pragma: no cover - exercised implicitly in non-Windows CI.
    HKLM = 0x80000002
    HKCU = 0x80000001
    HKCR = 0x80000000
    HKU = 0x80000003


REGISTRY_ROOTS: Dict[str, int] = {
    "HKLM": HKLM,
    "HKEY_LOCAL_MACHINE": HKLM,
    "HKCU": HKCU,
    "HKEY_CURRENT_USER": HKCU,
    "HKCR": HKCR,
    "HKU": HKU,
}

# ---------------------------------------------------------------------------
# Registry locations
# ---------------------------------------------------------------------------

UNINSTALL_ROOTS: Tuple[str, ...] = (
    r"HKLM\SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
    r"HKLM\SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
    r"HKCU\SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
)
"""!
@brief Uninstall namespaces probed by the keyed and generic heuristics.
"""

C2R_CONFIGURATION_KEY = r"HKLM\SOFTWARE\Microsoft\Office\ClickToRun\Configuration"
"""!
@brief Click-to-Run configuration node listing active release identifiers.
"""

APP_PATHS_ROOT = r"HKLM\SOFTWARE\Microsoft\Windows\CurrentVersion\App Paths"

C2R_PLATFORM_ALIASES: Dict[str, str] = {
    "x86": "x86",
    "x64": "x64",
    "amd64": "x64",
    "arm64": "ARM64",
}

# ---------------------------------------------------------------------------
# Product families and identifiers
# ---------------------------------------------------------------------------

FAMILY_OFFICE = "office"
FAMILY_VISIO = "visio"
FAMILY_PROJECT = "project"
FAMILY_CONSUMER = "consumer"

PRODUCT_FAMILIES: Tuple[str, ...] = (FAMILY_OFFICE, FAMILY_VISIO, FAMILY_PROJECT)
"""!
@brief Families removed by the uninstall-existing stage, in execution order.
"""

FAMILY_LABELS: Mapping[str, str] = {
    FAMILY_OFFICE: "Microsoft 365 / Office suite",
    FAMILY_VISIO: "Visio",
    FAMILY_PROJECT: "Project",
    FAMILY_CONSUMER: "consumer Office",
}

SUITE_PRODUCT_IDS: Tuple[str, ...] = (
    "O365ProPlusRetail",
    "O365ProPlusEEANoTeamsRetail",
    "O365BusinessRetail",
    "O365BusinessEEANoTeamsRetail",
    "O365SmallBusPremRetail",
    "ProPlusRetail",
    "ProPlus2019Retail",
    "ProPlus2019Volume",
    "ProPlus2021Retail",
    "ProPlus2021Volume",
    "ProPlus2024Retail",
    "ProPlus2024Volume",
    "StandardRetail",
    "Standard2019Volume",
    "Standard2021Volume",
    "Standard2024Volume",
    "ProfessionalRetail",
    "Professional2019Retail",
    "Professional2021Retail",
    "Professional2024Retail",
    # MSI suites (2010, 2013, 2016 Professional Plus and Standard)
    "{90140000-0011-0000-0000-0000000FF1CE}",
    "{90140000-0011-0000-1000-0000000FF1CE}",
    "{90150000-0011-0000-0000-0000000FF1CE}",
    "{90150000-0011-0000-1000-0000000FF1CE}",
    "{90160000-0011-0000-0000-0000000FF1CE}",
    "{90160000-0011-0000-1000-0000000FF1CE}",
    "{90160000-0012-0000-0000-0000000FF1CE}",
    "{90160000-0012-0000-1000-0000000FF1CE}",
)

VISIO_PRODUCT_IDS: Tuple[str, ...] = (
    "VisioProRetail",
    "VisioProXVolume",
    "VisioStdRetail",
    "VisioStdXVolume",
    "VisioPro2019Retail",
    "VisioPro2019Volume",
    "VisioStd2019Volume",
    "VisioPro2021Retail",
    "VisioPro2021Volume",
    "VisioStd2021Volume",
    "VisioPro2024Retail",
    "VisioPro2024Volume",
    "VisioStd2024Volume",
    "{90160000-0051-0000-0000-0000000FF1CE}",
    "{90160000-0051-0000-1000-0000000FF1CE}",
)

PROJECT_PRODUCT_IDS: Tuple[str, ...] = (
    "ProjectProRetail",
    "ProjectProXVolume",
    "ProjectStdRetail",
    "ProjectStdXVolume",
    "ProjectPro2019Retail",
    "ProjectPro2019Volume",
    "ProjectStd2019Volume",
    "ProjectPro2021Retail",
    "ProjectPro2021Volume",
    "ProjectStd2021Volume",
    "ProjectPro2024Retail",
    "ProjectPro2024Volume",
    "ProjectStd2024Volume",
    "{90160000-003B-0000-0000-0000000FF1CE}",
    "{90160000-003B-0000-1000-0000000FF1CE}",
)

CONSUMER_PRODUCT_IDS: Tuple[str, ...] = (
    "O365HomePremRetail",
    "HomeStudentRetail",
    "HomeStudent2019Retail",
    "HomeStudent2021Retail",
    "HomeStudent2024Retail",
    "HomeBusinessRetail",
    "HomeBusiness2019Retail",
    "HomeBusiness2021Retail",
    "HomeBusiness2024Retail",
    "PersonalRetail",
    "Personal2019Retail",
    "Personal2021Retail",
)
"""!
@brief Home, personal, and OEM-bundled release identifiers.
"""

CONSUMER_NAME_MARKERS: Tuple[str, ...] = (
    "home and student",
    "home & student",
    "home and business",
    "home & business",
    "office 365 home",
    "personal",
    "family",
    "homeprem",
    "homestudent",
    "homebusiness",
)
"""!
@brief Lower-case fragments marking a display name or id as a consumer SKU.
"""

LANGUAGE_TAGS: Tuple[str, ...] = (
    "ar-sa", "bg-bg", "cs-cz", "da-dk", "de-de", "el-gr", "en-gb", "en-us",
    "es-es", "es-mx", "et-ee", "fi-fi", "fr-ca", "fr-fr", "he-il", "hi-in",
    "hr-hr", "hu-hu", "id-id", "it-it", "ja-jp", "kk-kz", "ko-kr", "lt-lt",
    "lv-lv", "ms-my", "nb-no", "nl-nl", "pl-pl", "pt-br", "pt-pt", "ro-ro",
    "ru-ru", "sk-sk", "sl-si", "sr-latn-rs", "sv-se", "th-th", "tr-tr",
    "uk-ua", "vi-vn", "zh-cn", "zh-tw",
)
"""!
@brief Language tags the installer appends (``" - <lang>"``) to localized keys.
"""

# ---------------------------------------------------------------------------
# Application paths and install roots
# ---------------------------------------------------------------------------

SUITE_APP_PATHS: Mapping[str, str] = {
    "WINWORD.EXE": "Microsoft Word",
    "EXCEL.EXE": "Microsoft Excel",
    "POWERPNT.EXE": "Microsoft PowerPoint",
    "OUTLOOK.EXE": "Microsoft Outlook",
}

VISIO_APP_PATHS: Mapping[str, str] = {"VISIO.EXE": "Microsoft Visio"}

PROJECT_APP_PATHS: Mapping[str, str] = {"WINPROJ.EXE": "Microsoft Project"}

SUITE_INSTALL_ROOTS: Tuple[Tuple[str, str], ...] = (
    ("16.0", r"HKLM\SOFTWARE\Microsoft\Office\16.0\Common\InstallRoot"),
    ("16.0", r"HKLM\SOFTWARE\WOW6432Node\Microsoft\Office\16.0\Common\InstallRoot"),
    ("15.0", r"HKLM\SOFTWARE\Microsoft\Office\15.0\Common\InstallRoot"),
    ("15.0", r"HKLM\SOFTWARE\WOW6432Node\Microsoft\Office\15.0\Common\InstallRoot"),
    ("14.0", r"HKLM\SOFTWARE\Microsoft\Office\14.0\Common\InstallRoot"),
    ("14.0", r"HKLM\SOFTWARE\WOW6432Node\Microsoft\Office\14.0\Common\InstallRoot"),
)
"""!
@brief ``(major version, key)`` pairs whose ``Path`` value names an install root.
"""

VISIO_INSTALL_ROOTS: Tuple[Tuple[str, str], ...] = (
    ("16.0", r"HKLM\SOFTWARE\Microsoft\Office\16.0\Visio\InstallRoot"),
    ("16.0", r"HKLM\SOFTWARE\WOW6432Node\Microsoft\Office\16.0\Visio\InstallRoot"),
    ("15.0", r"HKLM\SOFTWARE\Microsoft\Office\15.0\Visio\InstallRoot"),
)

INSTALL_ROOT_VALUE = "Path"

# ---------------------------------------------------------------------------
# Store packages
# ---------------------------------------------------------------------------

STORE_PACKAGE_PATTERNS: Tuple[str, ...] = ("Microsoft.Office.*", "Microsoft.MicrosoftOfficeHub")
STORE_PACKAGE_EXCLUDES: Tuple[str, ...] = ("Microsoft.Office.Desktop*",)

# ---------------------------------------------------------------------------
# Deployment tool
# ---------------------------------------------------------------------------

ODT_DOWNLOAD_URL = (
    "https://download.microsoft.com/download/2/7/A/"
    "27AF1BE6-DD20-4CB4-B154-EBAB8A7D4A7E/officedeploymenttool_18129-20030.exe"
)
"""!
@brief Self-extracting Office Deployment Tool package.
"""

ODT_PACKAGE_NAME = "officedeploymenttool.exe"
ODT_SETUP_NAME = "setup.exe"
ODT_DOWNLOAD_TIMEOUT = 120

UNINSTALL_CONFIG_FILES: Mapping[str, str] = {
    FAMILY_OFFICE: "Uninstall-Office.xml",
    FAMILY_VISIO: "Uninstall-Visio.xml",
    FAMILY_PROJECT: "Uninstall-Project.xml",
}
"""!
@brief Per-family uninstall configurations looked up in the uninstall config directory.
"""

CONSUMER_REMOVAL_CONFIG = "Remove-ConsumerOffice.xml"

RESTART_DELAY_SECONDS = 300

__all__ = [
    "APP_PATHS_ROOT",
    "C2R_CONFIGURATION_KEY",
    "C2R_PLATFORM_ALIASES",
    "CONSUMER_NAME_MARKERS",
    "CONSUMER_PRODUCT_IDS",
    "CONSUMER_REMOVAL_CONFIG",
    "FAMILY_CONSUMER",
    "FAMILY_LABELS",
    "FAMILY_OFFICE",
    "FAMILY_PROJECT",
    "FAMILY_VISIO",
    "HKCR",
    "HKCU",
    "HKLM",
    "HKU",
    "INSTALL_ROOT_VALUE",
    "LANGUAGE_TAGS",
    "ODT_DOWNLOAD_TIMEOUT",
    "ODT_DOWNLOAD_URL",
    "ODT_PACKAGE_NAME",
    "ODT_SETUP_NAME",
    "PRODUCT_FAMILIES",
    "PROJECT_APP_PATHS",
    "PROJECT_PRODUCT_IDS",
    "REGISTRY_ROOTS",
    "RESTART_DELAY_SECONDS",
    "STORE_PACKAGE_EXCLUDES",
    "STORE_PACKAGE_PATTERNS",
    "SUITE_APP_PATHS",
    "SUITE_INSTALL_ROOTS",
    "SUITE_PRODUCT_IDS",
    "UNINSTALL_CONFIG_FILES",
    "UNINSTALL_ROOTS",
    "VISIO_APP_PATHS",
    "VISIO_INSTALL_ROOTS",
    "VISIO_PRODUCT_IDS",
]

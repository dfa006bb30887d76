"""!
@brief Multi-signal Office presence detection.
@details A :class:`Detector` runs every heuristic of a :class:`Catalog`
against a :class:`office_deployer.state.StateProvider` and merges the results
into a de-duplicated :class:`DetectionReport`. Heuristics always run in full,
even after an earlier one has found something, because each surfaces
different metadata for the run log and inventory. Records sharing a
``source_key`` collapse to the first one produced, so the merged set does not
depend on which heuristic saw a location first.
"""
from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from . import constants, logging_ext, registry_tools
from .state import StateProvider


class DetectionMethod(Enum):
    """!
    @brief Heuristic that produced a :class:`DetectedProduct`.
    @details Members are listed in merge order.
    """

    EXACT_KEY = "ExactKey"
    LOCALIZED_KEY = "LocalizedKey"
    CLICK_TO_RUN_CONFIG = "ClickToRunConfig"
    APP_PATH_EXECUTABLE = "AppPathExecutable"
    INSTALL_ROOT_KEY = "InstallRootKey"
    GENERIC_UNINSTALL_SCAN = "GenericUninstallScan"
    STORE_PACKAGE = "StorePackage"


UNKNOWN_PRODUCT_ID = "unknown"

_SHARED_METHODS = frozenset({DetectionMethod.APP_PATH_EXECUTABLE, DetectionMethod.INSTALL_ROOT_KEY})
_SCAN_FIELDS = ("display_name", "uninstall_command", "key_name")
_RELEASE_ID_SHAPE = re.compile(r"^[A-Za-z0-9]+$")
_LANGUAGE_SUFFIX = re.compile(r"\s+-\s+[a-z]{2}(?:-[a-z]{2,4})?(?:-[a-z]{2})?$", re.IGNORECASE)


@dataclass(frozen=True)
class DetectedProduct:
    """!
    @brief One recognised installation signal.
    @details ``source_key`` is the origin locator (registry handle, config
    value, or store package) and the de-duplication key.
    """

    product_id: str
    source_key: str
    detection_method: DetectionMethod
    display_name: str | None = None
    version: str | None = None
    install_date: str | None = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "product_id": self.product_id,
            "source_key": self.source_key,
            "detection_method": self.detection_method.value,
        }
        if self.display_name:
            payload["display_name"] = self.display_name
        if self.version:
            payload["version"] = self.version
        if self.install_date:
            payload["install_date"] = self.install_date
        return payload


@dataclass(frozen=True)
class UninstallEntry:
    """!
    @brief Normalised ``{display_name, uninstall_command, key_name}`` tuple.
    @details Fields are lower-cased so scan predicates match case-insensitively.
    """

    display_name: str
    uninstall_command: str
    key_name: str

    @classmethod
    def from_values(cls, key_name: str, values: Mapping[str, object]) -> "UninstallEntry":
        return cls(
            display_name=str(values.get("DisplayName") or "").strip().lower(),
            uninstall_command=str(values.get("UninstallString") or "").strip().lower(),
            key_name=key_name.strip().lower(),
        )


@dataclass(frozen=True)
class ScanPredicate:
    """!
    @brief Wildcard predicate evaluated against selected :class:`UninstallEntry` fields.
    @details Patterns use :mod:`fnmatch` syntax; a pattern without wildcards
    is treated as a substring match.
    """

    pattern: str
    fields: Tuple[str, ...] = _SCAN_FIELDS

    def matches(self, entry: UninstallEntry) -> bool:
        pattern = self.pattern.lower()
        if not any(char in pattern for char in "*?["):
            pattern = f"*{pattern}*"
        return any(fnmatch.fnmatchcase(getattr(entry, name), pattern) for name in self.fields)


def _display(pattern: str) -> ScanPredicate:
    return ScanPredicate(pattern, ("display_name",))


def _removes(release_prefix: str) -> ScanPredicate:
    return ScanPredicate(f"*productstoremove={release_prefix}*", ("uninstall_command",))


@dataclass(frozen=True)
class Catalog:
    """!
    @brief Fixed tables describing one product family.
    @details ``release_patterns``/``release_excludes`` decide which
    Click-to-Run release identifiers belong to the family; ``scan_include``
    and ``scan_exclude`` drive the generic uninstall scan.
    ``shares_consumer_binaries`` marks a family whose App Paths and install
    roots are also registered by consumer editions.
    """

    name: str
    product_ids: Tuple[str, ...]
    release_patterns: Tuple[str, ...] = ()
    release_excludes: Tuple[str, ...] = ()
    app_paths: Mapping[str, str] = field(default_factory=dict)
    install_roots: Tuple[Tuple[str, str], ...] = ()
    scan_include: Tuple[ScanPredicate, ...] = ()
    scan_exclude: Tuple[ScanPredicate, ...] = ()
    store_packages: bool = False
    shares_consumer_binaries: bool = False

    def claims_release_id(self, release_id: str) -> bool:
        candidate = release_id.lower()
        if any(fnmatch.fnmatchcase(candidate, pattern.lower()) for pattern in self.release_excludes):
            return False
        if candidate in {pid.lower() for pid in self.product_ids}:
            return True
        return any(fnmatch.fnmatchcase(candidate, pattern.lower()) for pattern in self.release_patterns)

    def matches_entry(self, entry: UninstallEntry) -> bool:
        if not any(predicate.matches(entry) for predicate in self.scan_include):
            return False
        return not any(predicate.matches(entry) for predicate in self.scan_exclude)


_CONSUMER_RELEASE_PATTERNS = ("O365HomePrem*", "HomeStudent*", "HomeBusiness*", "Personal*")

_CONSUMER_SCAN = (
    _display("*home and student*"),
    _display("*home & student*"),
    _display("*home and business*"),
    _display("*home & business*"),
    _display("*microsoft 365 family*"),
    _display("*microsoft 365 personal*"),
    _display("*office 365 home*"),
    _display("*office 365 personal*"),
    _display("*office personal*"),
    _removes("o365homeprem"),
    _removes("homestudent"),
    _removes("homebusiness"),
    _removes("personal"),
)

_AUXILIARY_EXCLUDES = (
    _display("*language pack*"),
    _display("*proofing*"),
    _display("* mui"),
    _display("* mui *"),
    _display("*(mui)*"),
    _display("*click-to-run extensibility*"),
    _display("*click-to-run licensing*"),
    _display("*click-to-run localization*"),
)

_VISIO_SCAN = (_display("*microsoft visio*"), _removes("visio"))
_PROJECT_SCAN = (_display("*microsoft project*"), _removes("project"))

SUITE_CATALOG = Catalog(
    name=constants.FAMILY_OFFICE,
    product_ids=constants.SUITE_PRODUCT_IDS,
    release_patterns=("O365*", "ProPlus*", "Standard*", "Professional*"),
    release_excludes=_CONSUMER_RELEASE_PATTERNS + ("Visio*", "Project*"),
    app_paths=constants.SUITE_APP_PATHS,
    install_roots=constants.SUITE_INSTALL_ROOTS,
    scan_include=(
        _display("*microsoft 365 apps*"),
        _display("*microsoft office*"),
        _display("*office 16 click-to-run*"),
        _removes("o365"),
        _removes("proplus"),
        _removes("standard"),
        _removes("professional"),
    ),
    scan_exclude=_CONSUMER_SCAN + _VISIO_SCAN + _PROJECT_SCAN + _AUXILIARY_EXCLUDES,
    shares_consumer_binaries=True,
)

VISIO_CATALOG = Catalog(
    name=constants.FAMILY_VISIO,
    product_ids=constants.VISIO_PRODUCT_IDS,
    release_patterns=("Visio*",),
    app_paths=constants.VISIO_APP_PATHS,
    install_roots=constants.VISIO_INSTALL_ROOTS,
    scan_include=_VISIO_SCAN,
    scan_exclude=(_display("*viewer*"),) + _AUXILIARY_EXCLUDES,
)

PROJECT_CATALOG = Catalog(
    name=constants.FAMILY_PROJECT,
    product_ids=constants.PROJECT_PRODUCT_IDS,
    release_patterns=("Project*",),
    app_paths=constants.PROJECT_APP_PATHS,
    scan_include=_PROJECT_SCAN,
    scan_exclude=_AUXILIARY_EXCLUDES,
)

CONSUMER_CATALOG = Catalog(
    name=constants.FAMILY_CONSUMER,
    product_ids=constants.CONSUMER_PRODUCT_IDS,
    release_patterns=_CONSUMER_RELEASE_PATTERNS,
    scan_include=_CONSUMER_SCAN,
    scan_exclude=_VISIO_SCAN + _PROJECT_SCAN + _AUXILIARY_EXCLUDES,
    store_packages=True,
)
"""!
@brief Consumer subset; flagship binaries and install roots are shared with
commercial SKUs so those tables stay empty.
"""

FAMILY_CATALOGS: Mapping[str, Catalog] = {
    constants.FAMILY_OFFICE: SUITE_CATALOG,
    constants.FAMILY_VISIO: VISIO_CATALOG,
    constants.FAMILY_PROJECT: PROJECT_CATALOG,
}


@dataclass(frozen=True)
class DetectionReport:
    """!
    @brief Merged, de-duplicated result of one detection pass.
    """

    catalog: str
    products: Tuple[DetectedProduct, ...] = ()

    @property
    def found(self) -> bool:
        return bool(self.products)

    def product_ids(self) -> Tuple[str, ...]:
        """!
        @brief Distinct concrete identifiers in first-seen order, ``unknown`` omitted.
        """

        ordered: List[str] = []
        for product in self.products:
            if product.product_id != UNKNOWN_PRODUCT_ID and product.product_id not in ordered:
                ordered.append(product.product_id)
        return tuple(ordered)

    def to_dict(self) -> Dict[str, object]:
        return {
            "catalog": self.catalog,
            "found": self.found,
            "products": [product.to_dict() for product in self.products],
        }


def merge_detections(batches: Iterable[Iterable[DetectedProduct]]) -> Tuple[DetectedProduct, ...]:
    """!
    @brief Collapse records sharing a ``source_key``.
    @details Registry paths are case-insensitive, so keys are compared
    case-folded. The first record seen for a key wins.
    """

    merged: Dict[str, DetectedProduct] = {}
    for batch in batches:
        for product in batch:
            key = product.source_key.casefold()
            if key not in merged:
                merged[key] = product
    return tuple(merged.values())


def _text(values: Mapping[str, object], name: str) -> str | None:
    value = values.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class Detector:
    """!
    @brief Runs the detection heuristics against an injected state provider.
    """

    def __init__(self, state: StateProvider, languages: Sequence[str] | None = None) -> None:
        self.state = state
        self.languages: Tuple[str, ...] = tuple(languages) if languages else constants.LANGUAGE_TAGS

    def detect(self, catalog: Catalog = SUITE_CATALOG, languages: Sequence[str] | None = None) -> DetectionReport:
        """!
        @brief Run every heuristic for ``catalog`` and merge the results.
        @param catalog Product family to look for.
        @param languages Overrides the language tags probed by the localized-key heuristic.
        """

        tags = tuple(languages) if languages else self.languages
        batches: List[Tuple[DetectionMethod, List[DetectedProduct]]] = [
            (DetectionMethod.EXACT_KEY, self._exact_keys(catalog)),
            (DetectionMethod.LOCALIZED_KEY, self._localized_keys(catalog, tags)),
            (DetectionMethod.CLICK_TO_RUN_CONFIG, self._click_to_run(catalog)),
            (DetectionMethod.APP_PATH_EXECUTABLE, self._app_paths(catalog)),
            (DetectionMethod.INSTALL_ROOT_KEY, self._install_roots(catalog)),
            (DetectionMethod.GENERIC_UNINSTALL_SCAN, self._generic_scan(catalog)),
        ]
        if catalog.store_packages:
            batches.append((DetectionMethod.STORE_PACKAGE, self._store_packages()))
        if catalog.shares_consumer_binaries:
            batches = self._attribute_shared_signals(catalog, batches, tags)
        return self._report(catalog, batches)

    def detect_consumer_subset(self, languages: Sequence[str] | None = None) -> DetectionReport:
        """!
        @brief Detect home, personal, and OEM-bundled SKUs including store packages.
        """

        return self.detect(CONSUMER_CATALOG, languages)

    # ------------------------------------------------------------------
    # Heuristics
    # ------------------------------------------------------------------

    def _keyed_lookup(
        self,
        product_id: str,
        key_name: str,
        method: DetectionMethod,
    ) -> List[DetectedProduct]:
        found: List[DetectedProduct] = []
        for root in constants.UNINSTALL_ROOTS:
            handle = registry_tools.join_handle(root, key_name)
            values = self.state.read_values(handle)
            if values is None:
                continue
            found.append(
                DetectedProduct(
                    product_id=product_id,
                    source_key=handle,
                    detection_method=method,
                    display_name=_text(values, "DisplayName"),
                    version=_text(values, "DisplayVersion"),
                    install_date=_text(values, "InstallDate"),
                )
            )
        return found

    def _exact_keys(self, catalog: Catalog) -> List[DetectedProduct]:
        found: List[DetectedProduct] = []
        for product_id in catalog.product_ids:
            found.extend(self._keyed_lookup(product_id, product_id, DetectionMethod.EXACT_KEY))
        return found

    def _localized_keys(self, catalog: Catalog, languages: Sequence[str]) -> List[DetectedProduct]:
        found: List[DetectedProduct] = []
        for product_id in catalog.product_ids:
            if product_id.startswith("{"):
                continue
            for tag in languages:
                found.extend(
                    self._keyed_lookup(product_id, f"{product_id} - {tag}", DetectionMethod.LOCALIZED_KEY)
                )
        return found

    def _click_to_run(self, catalog: Catalog) -> List[DetectedProduct]:
        values = self.state.read_values(constants.C2R_CONFIGURATION_KEY)
        if not values:
            return []

        raw_ids = str(values.get("ProductReleaseIds") or "").split(",")
        release_ids = [rid.strip() for rid in raw_ids if rid.strip()]
        platform = str(values.get("Platform") or "").lower()
        architecture = constants.C2R_PLATFORM_ALIASES.get(platform, platform)
        version = _text(values, "VersionToReport") or _text(values, "ClientVersionToReport")

        found: List[DetectedProduct] = []
        for release_id in release_ids:
            if not catalog.claims_release_id(release_id):
                continue
            display = f"{release_id} (Click-to-Run, {architecture})" if architecture else f"{release_id} (Click-to-Run)"
            found.append(
                DetectedProduct(
                    product_id=release_id,
                    source_key=f"{constants.C2R_CONFIGURATION_KEY}:ProductReleaseIds={release_id}",
                    detection_method=DetectionMethod.CLICK_TO_RUN_CONFIG,
                    display_name=display,
                    version=version,
                )
            )
        return found

    def _app_paths(self, catalog: Catalog) -> List[DetectedProduct]:
        found: List[DetectedProduct] = []
        for binary, label in catalog.app_paths.items():
            handle = registry_tools.join_handle(constants.APP_PATHS_ROOT, binary)
            values = self.state.read_values(handle)
            if not values:
                continue
            binary_path = _text(values, "")
            if not binary_path or not self.state.path_exists(binary_path):
                continue
            found.append(
                DetectedProduct(
                    product_id=UNKNOWN_PRODUCT_ID,
                    source_key=handle,
                    detection_method=DetectionMethod.APP_PATH_EXECUTABLE,
                    display_name=label,
                    version=self.state.file_version(binary_path),
                )
            )
        return found

    def _install_roots(self, catalog: Catalog) -> List[DetectedProduct]:
        found: List[DetectedProduct] = []
        for major, handle in catalog.install_roots:
            values = self.state.read_values(handle)
            if not values:
                continue
            root_path = _text(values, constants.INSTALL_ROOT_VALUE)
            if not root_path or not self.state.path_exists(root_path):
                continue
            found.append(
                DetectedProduct(
                    product_id=UNKNOWN_PRODUCT_ID,
                    source_key=handle,
                    detection_method=DetectionMethod.INSTALL_ROOT_KEY,
                    display_name=f"{constants.FAMILY_LABELS[catalog.name]} {major} install root",
                    version=major,
                )
            )
        return found

    def _generic_scan(self, catalog: Catalog) -> List[DetectedProduct]:
        found: List[DetectedProduct] = []
        for root in constants.UNINSTALL_ROOTS:
            for key_name in sorted(self.state.list_subkeys(root), key=str.lower):
                handle = registry_tools.join_handle(root, key_name)
                values = self.state.read_values(handle)
                if not values:
                    continue
                # Hidden MSI sub-components duplicate their parent product
                if str(values.get("SystemComponent", "0")) == "1":
                    continue
                if not catalog.matches_entry(UninstallEntry.from_values(key_name, values)):
                    continue
                found.append(
                    DetectedProduct(
                        product_id=_product_id_from_key(key_name),
                        source_key=handle,
                        detection_method=DetectionMethod.GENERIC_UNINSTALL_SCAN,
                        display_name=_text(values, "DisplayName"),
                        version=_text(values, "DisplayVersion"),
                        install_date=_text(values, "InstallDate"),
                    )
                )
        return found

    def _store_packages(self) -> List[DetectedProduct]:
        found: List[DetectedProduct] = []
        for package in self.state.list_store_packages():
            name = package.get("Name", "")
            full_name = package.get("PackageFullName", "")
            if not name or not full_name:
                continue
            if not any(fnmatch.fnmatchcase(name.lower(), p.lower()) for p in constants.STORE_PACKAGE_PATTERNS):
                continue
            if any(fnmatch.fnmatchcase(name.lower(), p.lower()) for p in constants.STORE_PACKAGE_EXCLUDES):
                continue
            found.append(
                DetectedProduct(
                    product_id=name,
                    source_key=f"appx:{full_name}",
                    detection_method=DetectionMethod.STORE_PACKAGE,
                    display_name=name,
                    version=package.get("Version") or None,
                )
            )
        return found

    def _attribute_shared_signals(
        self,
        catalog: Catalog,
        batches: List[Tuple[DetectionMethod, List[DetectedProduct]]],
        languages: Sequence[str],
    ) -> List[Tuple[DetectionMethod, List[DetectedProduct]]]:
        """!
        @brief Drop App Path and install root hits that belong to a consumer edition.
        @details Consumer Click-to-Run registers the same flagship binaries and
        install roots as the commercial suite. When the only evidence for
        ``catalog`` is such a shared entry and a consumer edition is registered,
        the shared entries are attributed to the consumer edition.
        """

        if any(products for method, products in batches if method not in _SHARED_METHODS):
            return batches
        if not any(products for method, products in batches if method in _SHARED_METHODS):
            return batches
        if not self._consumer_registered(languages):
            return batches
        logging_ext.get_human_logger().debug(
            "App path and install root hits attributed to consumer Office, not %s", catalog.name
        )
        return [(method, [] if method in _SHARED_METHODS else products) for method, products in batches]

    def _consumer_registered(self, languages: Sequence[str]) -> bool:
        return bool(
            self._exact_keys(CONSUMER_CATALOG)
            or self._localized_keys(CONSUMER_CATALOG, languages)
            or self._click_to_run(CONSUMER_CATALOG)
            or self._generic_scan(CONSUMER_CATALOG)
        )

    def _report(
        self,
        catalog: Catalog,
        batches: Sequence[Tuple[DetectionMethod, List[DetectedProduct]]],
    ) -> DetectionReport:
        human_logger = logging_ext.get_human_logger()
        machine_logger = logging_ext.get_machine_logger()

        for method, products in batches:
            human_logger.debug("%s heuristic (%s): %d hit(s)", method.value, catalog.name, len(products))

        products = merge_detections(products for _, products in batches)
        report = DetectionReport(catalog=catalog.name, products=products)
        machine_logger.info("detection", extra={"event": "detection", "report": report.to_dict()})
        return report


def _product_id_from_key(key_name: str) -> str:
    base = _LANGUAGE_SUFFIX.sub("", key_name.strip())
    if _RELEASE_ID_SHAPE.match(base):
        return base
    return UNKNOWN_PRODUCT_ID


__all__ = [
    "CONSUMER_CATALOG",
    "Catalog",
    "DetectedProduct",
    "DetectionMethod",
    "DetectionReport",
    "Detector",
    "FAMILY_CATALOGS",
    "PROJECT_CATALOG",
    "SUITE_CATALOG",
    "ScanPredicate",
    "UNKNOWN_PRODUCT_ID",
    "UninstallEntry",
    "VISIO_CATALOG",
    "merge_detections",
]

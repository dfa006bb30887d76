"""!
@brief Deployment decision policy.
@details Turns operator intent plus the detector's verdict into exactly one
:class:`Action`. Intent is validated once, at the boundary, into a
:class:`DeploymentFlags` value and never re-derived while stages run. The
consumer-removal modifier is carried alongside the action and applied before
it; it is not an action itself.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from . import constants
from .detect import CONSUMER_CATALOG, DetectedProduct, DetectionMethod
from .errors import FlagValidationError


class Action(Enum):
    """!
    @brief Closed set of outcomes produced by :func:`decide`.
    """

    INSTALL = "Install"
    SKIP_ALREADY_INSTALLED = "SkipAlreadyInstalled"
    FORCE_INSTALL = "ForceInstall"
    UNINSTALL_THEN_INSTALL = "UninstallThenInstall"
    DETECT_ONLY_REPORT = "DetectOnlyReport"

    @property
    def installs(self) -> bool:
        return self in (Action.INSTALL, Action.FORCE_INSTALL, Action.UNINSTALL_THEN_INSTALL)

    @property
    def uninstalls_first(self) -> bool:
        return self is Action.UNINSTALL_THEN_INSTALL


@dataclass(frozen=True)
class DeploymentFlags:
    """!
    @brief Operator intent as passed on the command line.
    @details ``force``, ``uninstall_existing``, ``detect_only`` and
    ``skip_if_installed`` are mutually exclusive; ``skip_if_installed`` only
    spells out the default. ``remove_consumer_office`` composes with any of them.
    """

    detect_only: bool = False
    skip_if_installed: bool = False
    force: bool = False
    uninstall_existing: bool = False
    remove_consumer_office: bool = False

    def selectors(self) -> Tuple[str, ...]:
        return tuple(
            name
            for name, value in (
                ("detect_only", self.detect_only),
                ("skip_if_installed", self.skip_if_installed),
                ("force", self.force),
                ("uninstall_existing", self.uninstall_existing),
            )
            if value
        )


def validate_flags(flags: DeploymentFlags) -> DeploymentFlags:
    """!
    @brief Reject combinations of mutually exclusive action selectors.
    @throws FlagValidationError naming the conflicting selectors.
    """

    selected = flags.selectors()
    if len(selected) > 1:
        raise FlagValidationError(
            "Mutually exclusive options combined: " + ", ".join(name.replace("_", "-") for name in selected)
        )
    return flags


def decide(is_installed: bool, flags: DeploymentFlags) -> Action:
    """!
    @brief Resolve the single action for the detected state.
    @details First matching row wins:

    | detect_only | installed | force | uninstall_existing | action |
    |---|---|---|---|---|
    | yes | any | any | any | DetectOnlyReport |
    | no | no | any | any | Install |
    | no | yes | no | no | SkipAlreadyInstalled |
    | no | yes | yes | any | ForceInstall |
    | no | yes | any | yes | UninstallThenInstall |

    @throws FlagValidationError for combinations outside the table.
    """

    validate_flags(flags)
    if flags.detect_only:
        return Action.DETECT_ONLY_REPORT
    if not is_installed:
        return Action.INSTALL
    if flags.force:
        return Action.FORCE_INSTALL
    if flags.uninstall_existing:
        return Action.UNINSTALL_THEN_INSTALL
    return Action.SKIP_ALREADY_INSTALLED


def is_consumer_product(product: DetectedProduct) -> bool:
    """!
    @brief Classify a detection as belonging to the consumer subset.
    @details Store packages are always consumer; otherwise the identifier or
    the display name must carry a consumer marker.
    """

    if product.detection_method is DetectionMethod.STORE_PACKAGE:
        return True
    if CONSUMER_CATALOG.claims_release_id(product.product_id):
        return True
    display = (product.display_name or "").lower()
    return any(marker in display for marker in constants.CONSUMER_NAME_MARKERS)


__all__ = [
    "Action",
    "DeploymentFlags",
    "decide",
    "is_consumer_product",
    "validate_flags",
]

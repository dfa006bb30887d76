"""!
@brief Version metadata for Office Deployer.
@details The packaged ``VERSION`` file is the single source of truth so the
CLI banner, the run log header, and the HTTP user agent used when fetching the
deployment tool all report the same release.
"""
from __future__ import annotations

from importlib import resources
from typing import Dict

__all__ = ["__version__", "__build__", "build_info", "user_agent"]


def _read_version_file() -> str:
    version_path = resources.files(__package__).joinpath("VERSION")
    try:
        return version_path.read_text(encoding="utf-8").strip() or "0.0.0"
    except FileNotFoundError:  # pragma: no cover - source checkouts always ship it
        return "0.0.0"


__version__ = _read_version_file()
__build__ = "dev"


def build_info() -> Dict[str, str]:
    """!
    @brief Provide a mapping with the current version metadata.
    @returns Dictionary containing ``version`` and ``build`` keys.
    """

    return {"version": __version__, "build": __build__}


def user_agent() -> str:
    """!
    @brief User agent presented to the deployment tool download endpoint.
    """

    return f"OfficeDeployer/{__version__}"

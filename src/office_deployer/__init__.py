"""!
@brief Office Deployer package root.
@details Modules under this namespace detect existing Microsoft Office
installations, decide on a single deployment action, and drive the Office
Deployment Tool through removal, uninstall, install, and verification stages.
"""

__all__ = [
    "appx",
    "constants",
    "detect",
    "elevation",
    "errors",
    "exec_utils",
    "logging_ext",
    "main",
    "odt",
    "orchestrator",
    "policy",
    "registry_tools",
    "state",
    "verify",
    "version",
]

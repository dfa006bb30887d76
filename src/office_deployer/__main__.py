"""!
@brief Support ``python -m office_deployer``.
"""
from __future__ import annotations

from .main import main

raise SystemExit(main())
